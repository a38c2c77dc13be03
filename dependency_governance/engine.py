"""
Policy engine: direct evaluation plus declarative rule evaluation.

Both paths run whenever a policy path is configured and their issues are
concatenated. When they agree on a violation the same finding is reported
twice (once as a license/cooling issue, once as a policy denial); no
de-duplication pass is applied.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from .cooling import CoolingChecker, CoolingConfig
from .errors import PolicyDocumentError
from .models import Dependency, Issue, IssueType, Severity
from .policy import load_policy_document, parse_cooling_config, parse_forbidden_licenses
from .rules import RuleEngine, build_facts
from .time_utils import utcnow


logger = logging.getLogger(__name__)


class PolicyEngine:
    """Evaluate a dependency inventory against a policy document."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def evaluate(
        self,
        dependencies: Sequence[Dependency],
        policy_path: Optional[str],
        check_licenses: bool = True,
        check_cooling: bool = True,
    ) -> List[Issue]:
        if not policy_path:
            return []

        try:
            document = load_policy_document(policy_path)
        except PolicyDocumentError as e:
            logger.warning("Policy not enforced: %s", e)
            return [Issue(
                type=IssueType.CONFIGURATION,
                severity=Severity.INFO,
                message=f"Policy {policy_path} could not be loaded; no policy enforced: {e}",
            )]

        issues = self.evaluate_direct(dependencies, document, check_licenses, check_cooling)
        issues.extend(self.evaluate_declarative(dependencies, document))
        return issues

    def evaluate_direct(
        self,
        dependencies: Sequence[Dependency],
        document: Dict[str, Any],
        check_licenses: bool = True,
        check_cooling: bool = True,
    ) -> List[Issue]:
        issues: List[Issue] = []
        if check_licenses:
            forbidden = parse_forbidden_licenses(document)
            if forbidden:
                issues.extend(self._license_issues(dependencies, forbidden))
        if check_cooling:
            cooling = parse_cooling_config(document)
            if cooling is not None and cooling.enabled:
                issues.extend(self._cooling_issues(dependencies, cooling))
        return issues

    def evaluate_declarative(
        self, dependencies: Sequence[Dependency], document: Dict[str, Any]
    ) -> List[Issue]:
        engine = RuleEngine(clock=self._clock)
        engine.load_document(document)
        denials = engine.evaluate(build_facts(dependencies, document))
        return [
            Issue(type=IssueType.POLICY, severity=Severity.CRITICAL, message=denial)
            for denial in denials
        ]

    def _license_issues(self, dependencies: Sequence[Dependency], forbidden: List[str]) -> List[Issue]:
        issues = []
        for dep in dependencies:
            if dep.license is None:
                continue
            for license_type in forbidden:
                if dep.license.type == license_type:
                    issues.append(Issue(
                        type=IssueType.LICENSE,
                        severity=Severity.CRITICAL,
                        message=f"Package {dep.name} uses forbidden license: {dep.license.type}",
                        dependency=dep,
                    ))
        return issues

    def _cooling_issues(self, dependencies: Sequence[Dependency], config: CoolingConfig) -> List[Issue]:
        checker = CoolingChecker(config, clock=self._clock)
        issues = []
        for dep in dependencies:
            if dep.metadata.is_local:
                continue
            result = checker.check(dep)
            if result.is_exception:
                logger.debug("Cooling exception %r applies to %s", result.exception.pattern, dep.name)
            for violation in result.violations:
                # Alert-only policies report violations without failing the run.
                severity = Severity.INFO if config.alert_only else violation.severity
                issues.append(Issue(
                    type=IssueType(violation.type.value),
                    severity=severity,
                    message=f"[{violation.type.value}] {violation.message}",
                    dependency=dep,
                ))
        return issues
