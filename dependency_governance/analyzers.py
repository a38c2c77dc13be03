"""
Per-ecosystem dependency discovery.

Each analyzer reads the project's manifests (or asks the ecosystem tool) for
the resolved dependency set and hands it to the shared pipeline in
``DependencyAnalyzer``.
"""

from __future__ import annotations

import json
import logging
import subprocess
import tomllib
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Type

from packaging.requirements import InvalidRequirement, Requirement

from .analyzer import DependencyAnalyzer
from .errors import AnalysisError
from .licenses import license_from_expression
from .models import Dependency, DependencyMetadata, Language, Module


logger = logging.getLogger(__name__)

TOOL_TIMEOUT_SECONDS = 300


class GoAnalyzer(DependencyAnalyzer):
    """Go modules via ``go list -m -json all``."""

    language = Language.GO
    manifest_files = ("go.mod",)
    required_tool = "go"
    tool_hint = "Install Go from https://go.dev/dl/ to analyze Go modules."

    def discover(self, root: Path) -> List[Dependency]:
        output = run_tool(["go", "list", "-m", "-json", "all"], root)
        deps = []
        for mod in iter_json_stream(output):
            path = mod.get("Path")
            if not path:
                continue
            replace = mod.get("Replace") or {}
            version = replace.get("Version") or mod.get("Version") or ""
            metadata = DependencyMetadata()
            module_dir = replace.get("Dir") or mod.get("Dir")
            if module_dir:
                metadata.extra["module_dir"] = module_dir
            # The main module and path replacements have no published version.
            if mod.get("Main") or (replace and not replace.get("Version")):
                metadata.mark_local()
            deps.append(Dependency(Module(path, version, self.language), metadata=metadata))
        return deps


class NpmAnalyzer(DependencyAnalyzer):
    """npm/TypeScript projects via ``package-lock.json``, else ``package.json``."""

    language = Language.TYPESCRIPT
    manifest_files = ("package.json", "package-lock.json")

    def discover(self, root: Path) -> List[Dependency]:
        lock_path = root / "package-lock.json"
        if lock_path.is_file():
            return self._from_lockfile(read_json(lock_path))
        return self._from_manifest(read_json(root / "package.json"))

    def _from_lockfile(self, lock: Dict[str, Any]) -> List[Dependency]:
        deps = []
        packages = lock.get("packages")
        if isinstance(packages, dict):
            # lockfileVersion 2/3: keys are install paths, "" is the project itself.
            for install_path, entry in sorted(packages.items()):
                if not install_path or not isinstance(entry, dict):
                    continue
                name = entry.get("name") or install_path.rsplit("node_modules/", 1)[-1]
                deps.append(self._dependency(name, entry))
            return deps

        def walk(tree: Dict[str, Any]) -> Iterator[Dependency]:
            for name, entry in sorted(tree.items()):
                if not isinstance(entry, dict):
                    continue
                yield self._dependency(name, entry)
                yield from walk(entry.get("dependencies") or {})

        return list(walk(lock.get("dependencies") or {}))

    def _from_manifest(self, manifest: Dict[str, Any]) -> List[Dependency]:
        deps = []
        for section in ("dependencies", "devDependencies"):
            for name, spec in sorted((manifest.get(section) or {}).items()):
                version = spec if is_exact_version(spec) else ""
                metadata = DependencyMetadata()
                if not version:
                    metadata.version_unknown = True
                deps.append(Dependency(Module(name, version, self.language), metadata=metadata))
        return deps

    def _dependency(self, name: str, entry: Dict[str, Any]) -> Dependency:
        metadata = DependencyMetadata()
        version = entry.get("version") or ""
        if entry.get("link") or version.startswith("file:"):
            metadata.mark_local()
            version = ""
        if entry.get("dev"):
            metadata.extra["dev"] = True
        license_field = entry.get("license")
        if isinstance(license_field, dict):
            license_field = license_field.get("type")
        return Dependency(
            Module(name, version, self.language),
            license=license_from_expression(license_field),
            metadata=metadata,
        )


class PythonAnalyzer(DependencyAnalyzer):
    """Python projects via pinned requirements and ``pyproject.toml``."""

    language = Language.PYTHON
    manifest_files = ("requirements.txt", "pyproject.toml")

    def discover(self, root: Path) -> List[Dependency]:
        seen: Dict[str, Dependency] = {}
        for line in self._requirement_lines(root):
            dep = self._dependency(line)
            if dep is not None and dep.name not in seen:
                seen[dep.name] = dep
        return list(seen.values())

    def _requirement_lines(self, root: Path) -> List[str]:
        lines: List[str] = []
        requirements = root / "requirements.txt"
        if requirements.is_file():
            for raw in requirements.read_text(encoding="utf-8").splitlines():
                line = raw.split(" #", 1)[0].strip()
                # Options and includes (-r, -e, --index-url) are not packages.
                if line and not line.startswith(("#", "-")):
                    lines.append(line)
        pyproject = root / "pyproject.toml"
        if pyproject.is_file():
            try:
                data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
            except tomllib.TOMLDecodeError as e:
                raise AnalysisError(f"cannot parse {pyproject}: {e}") from e
            lines.extend(data.get("project", {}).get("dependencies", []) or [])
        return lines

    def _dependency(self, line: str) -> Optional[Dependency]:
        try:
            req = Requirement(line)
        except InvalidRequirement:
            logger.warning("Skipping unparseable requirement: %s", line)
            return None
        metadata = DependencyMetadata()
        version = ""
        pins = [spec for spec in req.specifier if spec.operator in ("==", "===")]
        if len(pins) == 1 and "*" not in pins[0].version:
            version = pins[0].version
        else:
            metadata.version_unknown = True
        if req.url:
            metadata.mark_local()
        return Dependency(Module(req.name.lower(), version, self.language), metadata=metadata)


class RustAnalyzer(DependencyAnalyzer):
    """Rust crates via ``cargo metadata``."""

    language = Language.RUST
    manifest_files = ("Cargo.toml",)
    required_tool = "cargo"
    tool_hint = "Install Rust from https://rustup.rs/ to analyze Cargo projects."

    def discover(self, root: Path) -> List[Dependency]:
        output = run_tool(["cargo", "metadata", "--format-version", "1"], root)
        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise AnalysisError(f"cannot parse cargo metadata output: {e}") from e

        members = set(data.get("workspace_members") or [])
        deps = []
        for package in data.get("packages") or []:
            metadata = DependencyMetadata()
            # Workspace members and path dependencies have no registry source.
            if package.get("id") in members or not package.get("source"):
                metadata.mark_local()
            manifest_path = package.get("manifest_path")
            if manifest_path:
                metadata.extra["module_dir"] = str(Path(manifest_path).parent)
            deps.append(Dependency(
                Module(package.get("name", ""), package.get("version", ""), self.language),
                license=license_from_expression(package.get("license")),
                metadata=metadata,
            ))
        return deps


class CSharpAnalyzer(DependencyAnalyzer):
    """.NET projects via ``PackageReference`` items in ``*.csproj`` files."""

    language = Language.CSHARP
    manifest_files = ("*.csproj",)

    def discover(self, root: Path) -> List[Dependency]:
        seen: Dict[str, Dependency] = {}
        for project in sorted(root.glob("*.csproj")):
            for name, version in self._package_references(project):
                if name.lower() in seen:
                    continue
                metadata = DependencyMetadata()
                if not is_exact_version(version):
                    metadata.version_unknown = True
                    version = ""
                seen[name.lower()] = Dependency(Module(name, version, self.language), metadata=metadata)
        return list(seen.values())

    def _package_references(self, project: Path) -> Iterator[tuple]:
        try:
            tree = ET.parse(project)
        except ET.ParseError as e:
            raise AnalysisError(f"cannot parse {project}: {e}") from e
        for element in tree.iter():
            if not element.tag.endswith("PackageReference"):
                continue
            name = element.get("Include")
            if not name:
                continue
            version = element.get("Version")
            if version is None:
                child = next((c for c in element if c.tag.endswith("Version")), None)
                version = child.text.strip() if child is not None and child.text else ""
            yield name, version


ANALYZERS: Dict[Language, Type[DependencyAnalyzer]] = {
    Language.GO: GoAnalyzer,
    Language.TYPESCRIPT: NpmAnalyzer,
    Language.PYTHON: PythonAnalyzer,
    Language.RUST: RustAnalyzer,
    Language.CSHARP: CSharpAnalyzer,
}


def get_analyzer(language: Language, **kwargs: Any) -> DependencyAnalyzer:
    try:
        analyzer_cls = ANALYZERS[Language(language)]
    except (KeyError, ValueError):
        raise AnalysisError(f"no analyzer for language: {language}")
    return analyzer_cls(**kwargs)


def run_tool(cmd: Sequence[str], cwd: Path) -> str:
    logger.debug("Running %s in %s", " ".join(cmd), cwd)
    try:
        completed = subprocess.run(
            list(cmd),
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=TOOL_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise AnalysisError(f"{cmd[0]} failed: {e}") from e
    if completed.returncode != 0:
        raise AnalysisError(f"{' '.join(cmd)} exited with {completed.returncode}: {completed.stderr.strip()}")
    return completed.stdout


def iter_json_stream(text: str) -> Iterator[Dict[str, Any]]:
    """Decode a stream of concatenated JSON objects."""
    decoder = json.JSONDecoder()
    index = 0
    while index < len(text):
        while index < len(text) and text[index].isspace():
            index += 1
        if index >= len(text):
            break
        try:
            obj, index = decoder.raw_decode(text, index)
        except json.JSONDecodeError as e:
            raise AnalysisError(f"cannot parse tool output: {e}") from e
        yield obj


def read_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise AnalysisError(f"cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisError(f"{path} must contain a JSON object")
    return data


def is_exact_version(spec: Any) -> bool:
    """True for a bare release like ``1.2.3`` or ``1.2.3-beta.1``; ranges are not."""
    if not isinstance(spec, str) or not spec:
        return False
    head = spec.lstrip("v")
    if not head or not head[0].isdigit() or any(c in spec for c in "^~<>=*| ,[]()"):
        return False
    return not any(part in ("x", "X") for part in head.split("."))
