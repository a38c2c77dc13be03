"""
Cooling policy: reject or flag dependencies that are too new or too little used.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional

from .models import Dependency, Severity
from .time_utils import parse_date, utcnow


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoolingException:
    """A pattern-matched carve-out from cooling enforcement.

    ``until`` is a ``YYYY-MM-DD`` date; an empty value never expires.
    """

    pattern: str
    reason: str = ""
    until: str = ""
    approved_by: str = ""

    def is_expired(self, now: datetime) -> bool:
        if not self.until:
            return False
        until = parse_date(self.until)
        # An unparseable date does not expire the exception.
        return until is not None and now > until


@dataclass(frozen=True)
class CoolingConfig:
    """Cooling thresholds for one policy evaluation.

    ``alert_only`` and ``grace_period_days`` are read by the orchestration
    layer; the checker itself ignores them.
    """

    enabled: bool = False
    min_age_days: int = 7
    min_downloads: int = 100
    min_downloads_recent: int = 10
    alert_only: bool = False
    grace_period_days: int = 3
    exceptions: List[CoolingException] = field(default_factory=list)


class ViolationType(str, Enum):
    AGE = "age_violation"
    DOWNLOAD = "download_violation"


@dataclass(frozen=True)
class Violation:
    type: ViolationType
    severity: Severity
    message: str
    actual: Any
    expected: Any


@dataclass
class CheckResult:
    passed: bool
    violations: List[Violation] = field(default_factory=list)
    is_exception: bool = False
    in_grace_period: bool = False
    exception: Optional[CoolingException] = None


def glob_to_regex(pattern: str) -> str:
    """Translate a path-style glob into a regex.

    ``*`` and ``?`` never match ``/``; ``[...]`` classes (``^`` negates) and
    ``\\`` escapes are supported. Raises ``ValueError`` for a malformed pattern.
    """
    out = []
    i, n = 0, len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "\\":
            i += 1
            if i >= n:
                raise ValueError(f"trailing escape in pattern {pattern!r}")
            out.append(re.escape(pattern[i]))
        elif ch == "[":
            end = pattern.find("]", i + 2 if pattern[i + 1:i + 2] == "^" else i + 1)
            if end == -1:
                raise ValueError(f"unterminated character class in pattern {pattern!r}")
            body = pattern[i + 1:end]
            negate = body.startswith("^")
            if negate:
                body = body[1:]
            if not body:
                raise ValueError(f"empty character class in pattern {pattern!r}")
            escaped = "".join("\\" + c if c in "\\[]^" else c for c in body)
            out.append(f"[^/{escaped}]" if negate else f"[{escaped}]")
            i = end
        else:
            out.append(re.escape(ch))
        i += 1
    return "".join(out)


def matches_pattern(name: str, pattern: str) -> bool:
    """Whether a package name matches an exception pattern.

    Glob matching is single-segment, so ``@org/*`` alone would miss
    ``@org/sub/pkg``; patterns ending in ``/*`` therefore also match any name
    under that prefix.
    """
    try:
        if re.fullmatch(glob_to_regex(pattern), name):
            return True
    except (ValueError, re.error):
        logger.debug("Ignoring malformed cooling exception pattern %r", pattern)
        return False
    if pattern.endswith("/*"):
        return name.startswith(pattern[:-2] + "/")
    return False


def pattern_to_regex(pattern: str) -> Optional[str]:
    """Regex equivalent of ``matches_pattern``; None for a malformed pattern."""
    try:
        regex = glob_to_regex(pattern)
        re.compile(regex)
    except (ValueError, re.error):
        return None
    if pattern.endswith("/*"):
        regex = f"(?:{regex})|{re.escape(pattern[:-2] + '/')}.*"
    return regex


def find_exception(
    name: str, exceptions: List[CoolingException], now: datetime
) -> Optional[CoolingException]:
    """First matching exception that has not expired; expired matches are skipped."""
    for exception in exceptions:
        if not matches_pattern(name, exception.pattern):
            continue
        if exception.is_expired(now):
            logger.debug("Cooling exception %r for %s expired on %s", exception.pattern, name, exception.until)
            continue
        return exception
    return None


class CoolingChecker:
    """Validate dependencies against a cooling configuration."""

    def __init__(self, config: CoolingConfig, clock: Callable[[], datetime] = utcnow) -> None:
        self.config = config
        self._clock = clock

    def check(self, dep: Dependency) -> CheckResult:
        cfg = self.config
        if not cfg.enabled:
            return CheckResult(passed=True)

        exception = find_exception(dep.name, cfg.exceptions, self._clock())
        if exception is not None:
            return CheckResult(passed=True, is_exception=True, exception=exception)

        meta = dep.metadata
        if meta.age_days is None:
            # No age data means cooling does not apply.
            return CheckResult(passed=True)

        violations: List[Violation] = []
        if meta.age_days < cfg.min_age_days:
            violations.append(Violation(
                type=ViolationType.AGE,
                severity=Severity.HIGH,
                message=(
                    f"Package {dep.name} ({dep.version}) is only {meta.age_days} days old "
                    f"(minimum: {cfg.min_age_days} days)"
                ),
                actual=meta.age_days,
                expected=cfg.min_age_days,
            ))

        if meta.total_downloads is not None and meta.total_downloads < cfg.min_downloads:
            violations.append(Violation(
                type=ViolationType.DOWNLOAD,
                severity=Severity.MEDIUM,
                message=(
                    f"Package {dep.name} has {meta.total_downloads} total downloads "
                    f"(minimum: {cfg.min_downloads})"
                ),
                actual=meta.total_downloads,
                expected=cfg.min_downloads,
            ))

        if meta.recent_downloads is not None and meta.recent_downloads < cfg.min_downloads_recent:
            violations.append(Violation(
                type=ViolationType.DOWNLOAD,
                severity=Severity.MEDIUM,
                message=(
                    f"Package {dep.name} has {meta.recent_downloads} recent downloads "
                    f"(minimum: {cfg.min_downloads_recent})"
                ),
                actual=meta.recent_downloads,
                expected=cfg.min_downloads_recent,
            ))

        return CheckResult(passed=not violations, violations=violations)
