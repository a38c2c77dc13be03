"""
Manifest-based language detection.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import AnalysisError
from .interfaces import LanguageDetector
from .models import Language

# Checked in order; the first ecosystem with a manifest wins.
MANIFESTS: Dict[Language, Sequence[str]] = {
    Language.GO: ("go.mod", "go.sum"),
    Language.TYPESCRIPT: ("package.json", "package-lock.json"),
    Language.PYTHON: ("pyproject.toml", "requirements.txt", "poetry.lock"),
    Language.RUST: ("Cargo.toml", "Cargo.lock"),
    Language.CSHARP: ("*.csproj",),
}


class Detector(LanguageDetector):
    """Detect a project's ecosystem from the manifests in its root directory.

    ``overrides`` maps a language to relative paths; if any of them exists the
    language is used without auto-detection.
    """

    def __init__(self, overrides: Optional[Dict[Language, Sequence[str]]] = None) -> None:
        self.overrides = overrides or {}

    def detect(self, target: str) -> Tuple[Optional[Language], bool]:
        root = Path(target)
        for language, paths in self.overrides.items():
            if any((root / path).exists() for path in paths):
                return language, True
        for language, manifests in MANIFESTS.items():
            if _present(root, manifests[:1] if language != Language.PYTHON else manifests[:2]):
                return language, True
        return None, False

    def get_manifest_files(self, target: str) -> List[str]:
        language, found = self.detect(target)
        if not found or language is None:
            raise AnalysisError(f"no supported language manifest found in {target}")
        root = Path(target)
        files: List[str] = []
        for pattern in MANIFESTS[language]:
            files.extend(sorted(path.name for path in root.glob(pattern)))
        return files


def _present(root: Path, patterns: Sequence[str]) -> bool:
    return any(any(root.glob(pattern)) for pattern in patterns)
