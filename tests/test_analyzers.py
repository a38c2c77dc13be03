"""Tests for manifest discovery, language detection and the analysis pipeline."""

import json
import subprocess
from datetime import timedelta
from pathlib import Path

import pytest

from conftest import FIXED_NOW
from dependency_governance import analyzer as analyzer_module
from dependency_governance import analyzers
from dependency_governance.analyzers import (
    CSharpAnalyzer,
    GoAnalyzer,
    NpmAnalyzer,
    PythonAnalyzer,
    RustAnalyzer,
    get_analyzer,
    is_exact_version,
    iter_json_stream,
)
from dependency_governance.detector import Detector
from dependency_governance.errors import AnalysisError
from dependency_governance.models import AnalysisConfig, IssueType, Language, Metadata, Severity

PACKAGE_LOCK = {
    "name": "web",
    "lockfileVersion": 3,
    "packages": {
        "": {"name": "web", "version": "1.0.0"},
        "node_modules/left-pad": {"version": "1.3.0", "license": "WTFPL"},
        "node_modules/@types/node": {"version": "20.1.0", "license": "MIT", "dev": True},
        "node_modules/gpl-thing": {"version": "2.0.0", "license": "GPL-3.0"},
        "node_modules/shared": {"resolved": "../shared", "link": True},
    },
}


class StubClient:
    ecosystem = "stub"

    def __init__(self, days_old):
        self.days_old = days_old

    def get_metadata(self, name, version, timeout=None, cancel=None):
        return Metadata(
            publish_date=FIXED_NOW - timedelta(days=self.days_old.get(name, 365)),
            total_downloads=10000,
            recent_downloads=1000,
            source="stub",
        )


def write_lock(tmp_path: Path) -> None:
    (tmp_path / "package.json").write_text(json.dumps({"name": "web"}))
    (tmp_path / "package-lock.json").write_text(json.dumps(PACKAGE_LOCK))


def test_npm_lockfile_discovery(tmp_path: Path):
    write_lock(tmp_path)

    deps = {d.name: d for d in NpmAnalyzer(registry_client=StubClient({})).discover(tmp_path)}

    assert set(deps) == {"left-pad", "@types/node", "gpl-thing", "shared"}
    assert deps["gpl-thing"].license.type == "GPL-3.0"
    assert deps["@types/node"].metadata.extra["dev"] is True
    assert deps["shared"].metadata.is_local is True
    assert deps["shared"].version == ""


def test_npm_lockfile_v1_is_walked(tmp_path: Path):
    (tmp_path / "package.json").write_text("{}")
    (tmp_path / "package-lock.json").write_text(json.dumps({
        "lockfileVersion": 1,
        "dependencies": {"a": {"version": "1.0.0", "dependencies": {"b": {"version": "2.0.0"}}}},
    }))

    deps = NpmAnalyzer(registry_client=StubClient({})).discover(tmp_path)

    assert [(d.name, d.version) for d in deps] == [("a", "1.0.0"), ("b", "2.0.0")]


def test_npm_manifest_without_lock_keeps_exact_pins_only(tmp_path: Path):
    (tmp_path / "package.json").write_text(json.dumps({
        "dependencies": {"exact": "1.2.3", "ranged": "^1.0.0"},
    }))

    deps = {d.name: d for d in NpmAnalyzer(registry_client=StubClient({})).discover(tmp_path)}

    assert deps["exact"].version == "1.2.3"
    assert deps["ranged"].version == ""
    assert deps["ranged"].metadata.version_unknown is True


def test_python_requirements(tmp_path: Path):
    (tmp_path / "requirements.txt").write_text(
        "# pinned\n"
        "requests==2.31.0\n"
        "PyYAML>=6.0  # range\n"
        "-r other.txt\n"
        "--index-url https://example.invalid/simple\n"
        "not a valid requirement ===\n"
    )

    deps = {d.name: d for d in PythonAnalyzer(registry_client=StubClient({})).discover(tmp_path)}

    assert deps["requests"].version == "2.31.0"
    assert deps["pyyaml"].version == ""
    assert deps["pyyaml"].metadata.version_unknown is True
    assert len(deps) == 2


def test_python_pyproject_dependencies(tmp_path: Path):
    (tmp_path / "pyproject.toml").write_text(
        '[project]\nname = "app"\ndependencies = ["pandas==2.1.0", "tqdm"]\n'
    )

    deps = {d.name: d.version for d in PythonAnalyzer(registry_client=StubClient({})).discover(tmp_path)}

    assert deps == {"pandas": "2.1.0", "tqdm": ""}


def test_csharp_package_references(tmp_path: Path):
    (tmp_path / "App.csproj").write_text(
        '<Project Sdk="Microsoft.NET.Sdk">\n'
        "  <ItemGroup>\n"
        '    <PackageReference Include="Newtonsoft.Json" Version="13.0.3" />\n'
        '    <PackageReference Include="Serilog"><Version>3.1.1</Version></PackageReference>\n'
        '    <PackageReference Include="Polly" Version="[8.0,9.0)" />\n'
        "  </ItemGroup>\n"
        "</Project>\n"
    )

    deps = {d.name: d.version for d in CSharpAnalyzer(registry_client=StubClient({})).discover(tmp_path)}

    assert deps == {"Newtonsoft.Json": "13.0.3", "Serilog": "3.1.1", "Polly": ""}


def test_go_discovery_parses_module_stream(tmp_path: Path, monkeypatch):
    (tmp_path / "go.mod").write_text("module example.com/app\n")
    stream = (
        '{"Path": "example.com/app", "Main": true, "Dir": "/src/app"}\n'
        '{"Path": "github.com/spf13/cobra", "Version": "v1.8.0", "Dir": "/mod/cobra"}\n'
        '{"Path": "example.com/lib", "Version": "v0.1.0", "Replace": {"Path": "../lib", "Dir": "/src/lib"}}\n'
    )
    monkeypatch.setattr(analyzers, "run_tool", lambda cmd, cwd: stream)

    deps = {d.name: d for d in GoAnalyzer(registry_client=StubClient({})).discover(tmp_path)}

    assert deps["example.com/app"].metadata.is_local is True
    assert deps["github.com/spf13/cobra"].version == "v1.8.0"
    assert deps["github.com/spf13/cobra"].metadata.extra["module_dir"] == "/mod/cobra"
    assert deps["example.com/lib"].metadata.is_local is True


def test_rust_discovery_marks_workspace_members_local(tmp_path: Path, monkeypatch):
    (tmp_path / "Cargo.toml").write_text("[package]\nname = \"app\"\n")
    metadata = {
        "workspace_members": ["app 0.1.0 (path+file:///src/app)"],
        "packages": [
            {"id": "app 0.1.0 (path+file:///src/app)", "name": "app", "version": "0.1.0",
             "source": None, "manifest_path": "/src/app/Cargo.toml"},
            {"id": "serde 1.0.190", "name": "serde", "version": "1.0.190", "license": "MIT OR Apache-2.0",
             "source": "registry+https://github.com/rust-lang/crates.io-index",
             "manifest_path": "/cargo/serde/Cargo.toml"},
        ],
    }
    monkeypatch.setattr(analyzers, "run_tool", lambda cmd, cwd: json.dumps(metadata))

    deps = {d.name: d for d in RustAnalyzer(registry_client=StubClient({})).discover(tmp_path)}

    assert deps["app"].metadata.is_local is True
    assert deps["serde"].metadata.is_local is None
    assert deps["serde"].license.type == "Apache-2.0"


def test_missing_tool_reports_configuration_issue(tmp_path: Path, monkeypatch):
    (tmp_path / "Cargo.toml").write_text("[package]\nname = \"app\"\n")
    monkeypatch.setattr(analyzer_module.shutil, "which", lambda name: None)

    result = RustAnalyzer(registry_client=StubClient({})).analyze(str(tmp_path), AnalysisConfig())

    assert result.passed is True
    assert result.dependencies == []
    assert len(result.issues) == 1
    assert result.issues[0].type == IssueType.CONFIGURATION
    assert result.issues[0].severity == Severity.INFO
    assert "cargo" in result.issues[0].message


def test_missing_manifest_aborts(tmp_path: Path):
    with pytest.raises(AnalysisError):
        NpmAnalyzer(registry_client=StubClient({})).analyze(str(tmp_path), AnalysisConfig())


def test_run_tool_failure_is_analysis_error(tmp_path: Path, monkeypatch):
    def fake_run(*args, **kwargs):
        return subprocess.CompletedProcess(args[0], 1, stdout="", stderr="go: no module")

    monkeypatch.setattr(analyzers.subprocess, "run", fake_run)

    with pytest.raises(AnalysisError):
        analyzers.run_tool(["go", "list"], tmp_path)


def test_full_pipeline_with_policy(tmp_path: Path):
    write_lock(tmp_path)
    policy = tmp_path / "policy.yaml"
    policy.write_text(
        "licenses:\n  forbidden: [GPL-3.0]\n"
        "cooling:\n  enabled: true\n  min_age_days: 14\n"
    )
    analyzer = NpmAnalyzer(
        registry_client=StubClient({"left-pad": 3}),
        clock=lambda: FIXED_NOW,
    )

    result = analyzer.analyze(str(tmp_path), AnalysisConfig(policy_path=str(policy)))

    assert result.passed is False
    assert result.packages_scanned == 4
    types = sorted(i.type.value for i in result.issues)
    assert types == ["age_violation", "license", "policy", "policy"]
    shared = next(d for d in result.dependencies if d.name == "shared")
    assert shared.metadata.is_local is True
    assert shared.metadata.age_days is None


def test_licenses_only_skips_registry(tmp_path: Path):
    write_lock(tmp_path)

    class ExplodingClient:
        ecosystem = "boom"

        def get_metadata(self, *args, **kwargs):
            raise AssertionError("registry must not be queried")

    result = NpmAnalyzer(registry_client=ExplodingClient()).analyze(
        str(tmp_path), AnalysisConfig(check_licenses=True)
    )

    assert result.passed is True
    assert all(d.metadata.age_days is None for d in result.dependencies)


def test_module_dir_license_fallback(tmp_path: Path, monkeypatch):
    (tmp_path / "go.mod").write_text("module example.com/app\n")
    module_dir = tmp_path / "cobra"
    module_dir.mkdir()
    (module_dir / "LICENSE").write_text("Apache License\nVersion 2.0, January 2004\n")
    stream = json.dumps({"Path": "github.com/spf13/cobra", "Version": "v1.8.0", "Dir": str(module_dir)})
    monkeypatch.setattr(analyzers, "run_tool", lambda cmd, cwd: stream)
    monkeypatch.setattr(analyzer_module.shutil, "which", lambda name: "/usr/bin/go")

    result = GoAnalyzer(registry_client=StubClient({})).analyze(
        str(tmp_path), AnalysisConfig(check_licenses=True)
    )

    assert result.dependencies[0].license.type == "Apache-2.0"


def test_module_dir_without_license_file_reports_degraded_detection(tmp_path: Path, monkeypatch):
    (tmp_path / "go.mod").write_text("module example.com/app\n")
    with_license = tmp_path / "cobra"
    with_license.mkdir()
    (with_license / "LICENSE").write_text("MIT License\n")
    bare = tmp_path / "pflag"
    bare.mkdir()
    stream = "\n".join([
        json.dumps({"Path": "example.com/app", "Main": True, "Dir": str(tmp_path)}),
        json.dumps({"Path": "github.com/spf13/cobra", "Version": "v1.8.0", "Dir": str(with_license)}),
        json.dumps({"Path": "github.com/spf13/pflag", "Version": "v1.0.5", "Dir": str(bare)}),
    ])
    monkeypatch.setattr(analyzers, "run_tool", lambda cmd, cwd: stream)
    monkeypatch.setattr(analyzer_module.shutil, "which", lambda name: "/usr/bin/go")

    result = GoAnalyzer(registry_client=StubClient({})).analyze(
        str(tmp_path), AnalysisConfig(check_licenses=True)
    )

    assert result.passed is True
    assert len(result.issues) == 1
    issue = result.issues[0]
    assert issue.type == IssueType.LICENSE
    assert issue.severity == Severity.MEDIUM
    assert issue.message == (
        "License detection degraded: no license file found for 1 module(s): github.com/spf13/pflag"
    )


@pytest.mark.parametrize(
    "files,expected",
    [
        (["go.mod"], Language.GO),
        (["package.json"], Language.TYPESCRIPT),
        (["requirements.txt"], Language.PYTHON),
        (["pyproject.toml"], Language.PYTHON),
        (["Cargo.toml"], Language.RUST),
        (["App.csproj"], Language.CSHARP),
    ],
)
def test_detector(tmp_path: Path, files, expected):
    for name in files:
        (tmp_path / name).write_text("")

    assert Detector().detect(str(tmp_path)) == (expected, True)


def test_detector_nothing_found(tmp_path: Path):
    assert Detector().detect(str(tmp_path)) == (None, False)
    with pytest.raises(AnalysisError):
        Detector().get_manifest_files(str(tmp_path))


def test_detector_manifest_files(tmp_path: Path):
    (tmp_path / "package.json").write_text("{}")
    (tmp_path / "package-lock.json").write_text("{}")

    assert Detector().get_manifest_files(str(tmp_path)) == ["package.json", "package-lock.json"]


def test_get_analyzer():
    assert isinstance(get_analyzer(Language.RUST, registry_client=StubClient({})), RustAnalyzer)
    assert isinstance(get_analyzer("python", registry_client=StubClient({})), PythonAnalyzer)
    with pytest.raises(AnalysisError):
        get_analyzer("cobol")


def test_iter_json_stream():
    assert list(iter_json_stream('{"a": 1}\n{"b": 2}\n')) == [{"a": 1}, {"b": 2}]
    with pytest.raises(AnalysisError):
        list(iter_json_stream('{"a": '))


@pytest.mark.parametrize(
    "spec,expected",
    [("1.2.3", True), ("v1.2.3", True), ("1.0.0-next.4", True), ("^1.2.3", False),
     ("1.x", False), ("latest", False), ("[1.0,2.0)", False), ("", False)],
)
def test_is_exact_version(spec, expected):
    assert is_exact_version(spec) is expected
