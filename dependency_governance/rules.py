"""
Declarative deny rules compiled from a policy document.

A policy is compiled into a small set of deny rules. Each rule is a pandas
query over the flattened ``dependencies[]`` facts plus a message template;
every matching row yields one denial string. Denials form a set, so identical
messages collapse and the output is sorted.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .cooling import pattern_to_regex
from .errors import PolicyDocumentError
from .models import Dependency
from .policy import load_policy_document, parse_cooling_config, parse_forbidden_licenses
from .time_utils import utcnow


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rule:
    """One deny rule: ``query`` selects offending dependencies."""

    name: str
    query: str
    message: str
    args: Tuple[str, ...]
    columns: Tuple[str, ...] = ()
    numeric_columns: Tuple[str, ...] = ()

    def render(self) -> str:
        return f"deny[{self.name}] if {self.query}"

    def format(self, row: pd.Series) -> str:
        return self.message.format(*(_fact_value(row.get(arg)) for arg in self.args))


@dataclass
class RuleSet:
    rules: List[Rule] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rules)

    def render(self) -> str:
        return "\n".join(rule.render() for rule in self.rules)


def compile_policy(document: Dict[str, Any], now: Optional[datetime] = None) -> RuleSet:
    """Compile forbidden-license and cooling-age checks into deny rules.

    The cooling rule skips local dependencies and any name covered by an
    exception. Exceptions are resolved against ``now`` at compile time, so expired
    entries are left out of the compiled rule.
    """
    now = now or utcnow()
    rules: List[Rule] = []

    forbidden = parse_forbidden_licenses(document)
    if forbidden:
        rules.append(Rule(
            name="forbidden_license",
            query=f"`license.type` in {json.dumps(forbidden)}",
            message="Package {} uses forbidden license: {}",
            args=("module.name", "license.type"),
            columns=("module.name", "license.type"),
        ))

    cooling = parse_cooling_config(document)
    # Alert-only cooling never denies.
    if cooling is not None and cooling.enabled and not cooling.alert_only:
        query = f"`metadata.age_days` < {int(cooling.min_age_days)} and `metadata.is_local` != True"
        patterns = [
            regex
            for regex in (
                pattern_to_regex(exc.pattern)
                for exc in cooling.exceptions
                if not exc.is_expired(now)
            )
            if regex is not None
        ]
        if patterns:
            combined = "|".join(f"(?:{regex})" for regex in patterns)
            query += f" and ~`module.name`.str.fullmatch({json.dumps(combined)})"
        rules.append(Rule(
            name="cooling_min_age",
            query=query,
            message="Package {} ({}) violates cooling policy: {} days old",
            args=("module.name", "module.version", "metadata.age_days"),
            columns=("module.name", "module.version", "metadata.age_days", "metadata.is_local"),
            numeric_columns=("metadata.age_days",),
        ))

    return RuleSet(rules)


def build_facts(dependencies: Iterable[Dependency], document: Dict[str, Any]) -> Dict[str, Any]:
    """Facts document the rules are evaluated against."""
    return {
        "dependencies": [dep.to_dict() for dep in dependencies],
        "policy": document,
    }


def evaluate_rules(rule_set: RuleSet, facts: Dict[str, Any]) -> List[str]:
    records = facts.get("dependencies") or []
    if not records or not rule_set.rules:
        return []

    frame = pd.json_normalize(records)
    denials = set()
    for rule in rule_set.rules:
        for column in rule.columns:
            if column not in frame.columns:
                frame[column] = None
        for column in rule.numeric_columns:
            frame[column] = pd.to_numeric(frame[column], errors="coerce")
        matched = frame.query(rule.query, engine="python")
        logger.debug("Rule %s matched %d dependencies", rule.name, len(matched))
        for _, row in matched.iterrows():
            denials.add(rule.format(row))
    return sorted(denials)


class RuleEngine:
    """Load a policy, compile it, and evaluate it against facts."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self.rule_set: Optional[RuleSet] = None

    def load_policy(self, path: str) -> None:
        self.load_document(load_policy_document(path))

    def load_document(self, document: Dict[str, Any]) -> None:
        self.rule_set = compile_policy(document, now=self._clock())
        logger.debug("Compiled %d policy rules:\n%s", len(self.rule_set), self.rule_set.render())

    def evaluate(self, facts: Dict[str, Any]) -> List[str]:
        if self.rule_set is None:
            raise PolicyDocumentError("no policy loaded")
        return evaluate_rules(self.rule_set, facts)


def _fact_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return int(value)
    return value
