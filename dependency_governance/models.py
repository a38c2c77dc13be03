"""
Core data models for dependency governance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .time_utils import age_in_days

REGISTRY_FAILURE_AGE_DAYS = 365


class Language(str, Enum):
    """Supported package ecosystems."""

    GO = "go"
    TYPESCRIPT = "typescript"
    PYTHON = "python"
    RUST = "rust"
    CSHARP = "csharp"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


BLOCKING_SEVERITIES = frozenset({Severity.CRITICAL, Severity.HIGH})


class IssueType(str, Enum):
    LICENSE = "license"
    COOLING = "cooling"
    AGE_VIOLATION = "age_violation"
    DOWNLOAD_VIOLATION = "download_violation"
    POLICY = "policy"
    CONFIGURATION = "configuration"


COOLING_ISSUE_TYPES = frozenset(
    {IssueType.COOLING, IssueType.AGE_VIOLATION, IssueType.DOWNLOAD_VIOLATION}
)


@dataclass(frozen=True)
class Module:
    """A package coordinate in a given ecosystem."""

    name: str
    version: str
    language: Language

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "version": self.version, "language": self.language.value}


@dataclass
class License:
    """A license attached to a dependency."""

    name: str
    type: str = "Unknown"
    url: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type, "url": self.url}


_METADATA_FIELDS = (
    "age_days",
    "publish_date",
    "total_downloads",
    "recent_downloads",
    "age_unknown",
    "registry_error",
    "is_local",
    "version_unknown",
)


@dataclass
class DependencyMetadata:
    """Cooling and provenance facts about a dependency.

    Every field is optional; ``to_dict`` only emits the ones that are set so the
    JSON keys match what downstream consumers validate against. Registry
    success and failure are recorded through ``apply_registry_metadata`` and
    ``mark_registry_failure`` so the related fields always change together.
    """

    age_days: Optional[int] = None
    publish_date: Optional[datetime] = None
    total_downloads: Optional[int] = None
    recent_downloads: Optional[int] = None
    age_unknown: Optional[bool] = None
    registry_error: Optional[str] = None
    is_local: Optional[bool] = None
    version_unknown: Optional[bool] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def apply_registry_metadata(self, meta: "Metadata", now: Optional[datetime] = None) -> None:
        self.age_days = age_in_days(meta.publish_date, now)
        self.publish_date = meta.publish_date
        # Unavailable figures (-1) are left absent rather than compared.
        self.total_downloads = meta.total_downloads if meta.total_downloads >= 0 else None
        self.recent_downloads = meta.recent_downloads if meta.recent_downloads >= 0 else None
        self.age_unknown = None
        self.registry_error = None

    def mark_registry_failure(self, error: object) -> None:
        """Record a failed lookup with the conservative "assume mature" age."""
        message = str(error) or error.__class__.__name__
        self.age_days = REGISTRY_FAILURE_AGE_DAYS
        self.age_unknown = True
        self.registry_error = message

    def mark_local(self) -> None:
        self.is_local = True

    def to_dict(self) -> Dict[str, Any]:
        # Extra keys never shadow the typed fields.
        data: Dict[str, Any] = {
            key: value for key, value in self.extra.items() if key not in _METADATA_FIELDS
        }
        for key in _METADATA_FIELDS:
            value = getattr(self, key)
            if isinstance(value, datetime):
                value = value.isoformat()
            if value is not None:
                data[key] = value
        return data


@dataclass
class Dependency:
    """An analyzed dependency: module coordinate, license and metadata."""

    module: Module
    license: Optional[License] = None
    metadata: DependencyMetadata = field(default_factory=DependencyMetadata)

    @property
    def name(self) -> str:
        return self.module.name

    @property
    def version(self) -> str:
        return self.module.version

    @property
    def language(self) -> Language:
        return self.module.language

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module": self.module.to_dict(),
            "license": self.license.to_dict() if self.license else None,
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class Metadata:
    """Registry metadata for one package version.

    Download figures are ``-1`` when the ecosystem does not expose them, or a
    documented conservative constant for clients that substitute one.
    """

    publish_date: datetime
    total_downloads: int
    recent_downloads: int
    source: str
    version: Optional[str] = None


@dataclass(frozen=True)
class Issue:
    """A finding produced by policy evaluation."""

    type: IssueType
    severity: Severity
    message: str
    dependency: Optional[Dependency] = None

    def __post_init__(self) -> None:
        # Severity("bogus") raises ValueError; invalid values must never reach a report.
        object.__setattr__(self, "severity", Severity(self.severity))
        object.__setattr__(self, "type", IssueType(self.type))

    @property
    def is_cooling(self) -> bool:
        return self.type in COOLING_ISSUE_TYPES

    @property
    def is_blocking(self) -> bool:
        return self.severity in BLOCKING_SEVERITIES

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.dependency is not None:
            data["dependency"] = self.dependency.to_dict()
        return data


def compute_passed(issues: Iterable[Issue]) -> bool:
    """An analysis passes unless some issue is high or critical."""
    return not any(issue.is_blocking for issue in issues)


@dataclass
class AnalysisResult:
    """Terminal result of one analysis run."""

    dependencies: List[Dependency] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)
    passed: bool = True
    duration: timedelta = field(default_factory=timedelta)
    packages_scanned: int = 0


@dataclass
class AnalysisConfig:
    """Options for a single analysis run.

    When neither ``check_licenses`` nor ``check_cooling`` is requested both are
    enabled.
    """

    target: str = "."
    policy_path: Optional[str] = None
    languages: List[Language] = field(default_factory=list)
    check_licenses: bool = False
    check_cooling: bool = False
    max_workers: int = 8
    show_progress: bool = False

    def __post_init__(self) -> None:
        if not self.check_licenses and not self.check_cooling:
            self.check_licenses = True
            self.check_cooling = True
