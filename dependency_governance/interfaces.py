"""
Interfaces for registry clients and language analyzers.
"""

from __future__ import annotations

import threading
from typing import List, Optional, Protocol, Tuple

from .models import AnalysisConfig, AnalysisResult, Language, Metadata


class RegistryClient(Protocol):
    """Fetch publish date and popularity figures for one package version."""

    ecosystem: str

    def get_metadata(
        self,
        name: str,
        version: str,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Metadata:
        ...


class Analyzer(Protocol):
    """Discover, enrich and evaluate the dependencies of one ecosystem."""

    language: Language

    def analyze(self, target: str, config: AnalysisConfig) -> AnalysisResult:
        ...

    def detect_languages(self, target: str) -> List[Language]:
        ...


class LanguageDetector(Protocol):
    """Map a project directory to its ecosystem and manifest files."""

    def detect(self, target: str) -> Tuple[Optional[Language], bool]:
        ...

    def get_manifest_files(self, target: str) -> List[str]:
        ...
