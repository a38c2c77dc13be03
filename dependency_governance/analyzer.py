"""
Analysis orchestration shared by the per-ecosystem analyzers.
"""

from __future__ import annotations

import logging
import shutil
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import RegistrySettings
from .detector import Detector
from .engine import PolicyEngine
from .enrichment import enrich_dependencies
from .errors import AnalysisError
from .interfaces import Analyzer, RegistryClient
from .licenses import find_license_file, license_from_file
from .models import (
    AnalysisConfig,
    AnalysisResult,
    Dependency,
    Issue,
    IssueType,
    Language,
    Severity,
    compute_passed,
)
from .registry import new_client
from .time_utils import utcnow


logger = logging.getLogger(__name__)

MAX_LISTED_MODULES = 5


class DependencyAnalyzer(Analyzer):
    """Discover → detect licenses → enrich → evaluate policy.

    Subclasses set ``language``/``manifest_files`` and implement ``discover``.
    Analyzers that shell out to an ecosystem tool name it in ``required_tool``;
    when the tool is missing the run reports one informational issue instead
    of failing.
    """

    language: Language
    manifest_files: Sequence[str] = ()
    required_tool: Optional[str] = None
    tool_hint: str = ""

    def __init__(
        self,
        registry_client: Optional[RegistryClient] = None,
        policy_engine: Optional[PolicyEngine] = None,
        settings: Optional[RegistrySettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or RegistrySettings.from_env()
        self._registry_client = registry_client
        self._clock = clock
        self.policy_engine = policy_engine or PolicyEngine(clock=clock)

    @property
    def registry_client(self) -> Optional[RegistryClient]:
        if self._registry_client is None:
            self._registry_client = new_client(self.language.value, settings=self.settings)
        return self._registry_client

    def analyze(self, target: str, config: AnalysisConfig) -> AnalysisResult:
        start = time.monotonic()
        root = Path(target)
        if not self.has_manifest(root):
            raise AnalysisError(f"no {self.language.value} manifest found in {target}")

        if self.required_tool and shutil.which(self.required_tool) is None:
            message = f"{self.language.value} project detected but {self.required_tool} is not available."
            if self.tool_hint:
                message = f"{message} {self.tool_hint}"
            logger.warning(message)
            return AnalysisResult(
                issues=[Issue(type=IssueType.CONFIGURATION, severity=Severity.INFO, message=message)],
                passed=True,
                duration=_elapsed(start),
            )

        logger.info("Discovering %s dependencies in %s", self.language.value, target)
        dependencies = self.discover(root)
        logger.info("Found %d %s dependencies", len(dependencies), self.language.value)

        issues: List[Issue] = []
        if config.check_licenses:
            issues.extend(self.detect_licenses(dependencies))

        if config.check_cooling:
            client = self.registry_client
            if client is None:
                logger.warning("No registry client for %s; cooling metadata unavailable", self.language.value)
            else:
                dependencies = enrich_dependencies(
                    dependencies,
                    client,
                    max_workers=config.max_workers,
                    show_progress=config.show_progress,
                    now=self._clock(),
                )

        issues.extend(self.policy_engine.evaluate(
            dependencies,
            config.policy_path,
            check_licenses=config.check_licenses,
            check_cooling=config.check_cooling,
        ))

        return AnalysisResult(
            dependencies=dependencies,
            issues=issues,
            passed=compute_passed(issues),
            duration=_elapsed(start),
            packages_scanned=len(dependencies),
        )

    def detect_languages(self, target: str) -> List[Language]:
        language, found = Detector().detect(target)
        return [language] if found and language is not None else []

    def has_manifest(self, root: Path) -> bool:
        return any(any(root.glob(pattern)) for pattern in self.manifest_files)

    def discover(self, root: Path) -> List[Dependency]:
        raise NotImplementedError

    def detect_licenses(self, dependencies: Sequence[Dependency]) -> List[Issue]:
        """Fill missing licenses from license files in each module directory.

        Modules whose directory holds no recognizable license file are
        reported together in one medium-severity issue.
        """
        missing: List[str] = []
        for dep in dependencies:
            if dep.license is not None or dep.metadata.is_local:
                continue
            module_dir = dep.metadata.extra.get("module_dir")
            if not module_dir:
                continue
            path = find_license_file(module_dir)
            if path is None:
                missing.append(dep.module.name)
                continue
            dep.license = license_from_file(path)
            dep.metadata.extra["license_path"] = str(path)
            dep.metadata.extra["license_detection"] = "module_dir"

        if not missing:
            return []
        logger.warning("No license file found for %d %s module(s)", len(missing), self.language.value)
        shown = ", ".join(missing[:MAX_LISTED_MODULES])
        if len(missing) > MAX_LISTED_MODULES:
            shown += f" (+{len(missing) - MAX_LISTED_MODULES} more)"
        return [Issue(
            type=IssueType.LICENSE,
            severity=Severity.MEDIUM,
            message=f"License detection degraded: no license file found for {len(missing)} module(s): {shown}",
        )]


def _elapsed(start: float) -> timedelta:
    return timedelta(seconds=time.monotonic() - start)
