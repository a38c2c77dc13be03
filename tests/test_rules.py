"""Tests for declarative rule compilation and evaluation."""

import pytest

from conftest import FIXED_NOW, make_dependency
from dependency_governance.errors import PolicyDocumentError
from dependency_governance.rules import RuleEngine, build_facts, compile_policy, evaluate_rules


def evaluate(document, dependencies):
    rule_set = compile_policy(document, now=FIXED_NOW)
    return evaluate_rules(rule_set, build_facts(dependencies, document))


def test_forbidden_license_denial():
    document = {"licenses": {"forbidden": ["GPL-3.0"]}}
    deps = [
        make_dependency("test/gpl-package", license_type="GPL-3.0"),
        make_dependency("test/mit-package", license_type="MIT"),
        make_dependency("test/unlicensed"),
    ]

    assert evaluate(document, deps) == ["Package test/gpl-package uses forbidden license: GPL-3.0"]


def test_cooling_denial_uses_min_age():
    document = {"cooling": {"enabled": True, "min_age_days": 30}}
    deps = [
        make_dependency("test/young-package", version="0.1.0", age_days=10),
        make_dependency("test/old-package", age_days=100),
        make_dependency("test/local", version="", is_local=True),
        make_dependency("test/never-looked-up"),
    ]

    assert evaluate(document, deps) == [
        "Package test/young-package (0.1.0) violates cooling policy: 10 days old"
    ]


def test_cooling_default_min_age_is_seven():
    document = {"cooling": {"enabled": True}}
    deps = [make_dependency("a", age_days=6), make_dependency("b", age_days=7)]

    assert evaluate(document, deps) == ["Package a (1.0.0) violates cooling policy: 6 days old"]


def test_cooling_rule_honours_live_exceptions_only():
    document = {"cooling": {"enabled": True, "exceptions": [
        {"pattern": "@myorg/*", "until": "2099-01-01"},
        {"pattern": "@legacy/*", "until": "2020-01-01"},
    ]}}
    deps = [
        make_dependency("@myorg/sub/pkg", age_days=1),
        make_dependency("@legacy/pkg", age_days=1),
    ]

    assert evaluate(document, deps) == ["Package @legacy/pkg (1.0.0) violates cooling policy: 1 days old"]


def test_alert_only_and_disabled_cooling_compile_no_rule():
    assert len(compile_policy({"cooling": {"enabled": True, "alert_only": True}})) == 0
    assert len(compile_policy({"cooling": {"enabled": False}})) == 0


def test_identical_denials_collapse_and_sort():
    document = {"licenses": {"forbidden": ["GPL-3.0"]}}
    deps = [
        make_dependency("b", license_type="GPL-3.0"),
        make_dependency("a", license_type="GPL-3.0"),
        make_dependency("a", license_type="GPL-3.0"),
    ]

    assert evaluate(document, deps) == [
        "Package a uses forbidden license: GPL-3.0",
        "Package b uses forbidden license: GPL-3.0",
    ]


def test_no_dependencies_no_denials():
    assert evaluate({"licenses": {"forbidden": ["GPL-3.0"]}}, []) == []


def test_rule_engine_requires_loaded_policy():
    with pytest.raises(PolicyDocumentError):
        RuleEngine().evaluate({"dependencies": []})


def test_rule_engine_loads_policy_file(tmp_path):
    policy_file = tmp_path / "policy.yaml"
    policy_file.write_text("licenses:\n  forbidden: [AGPL-3.0]\n")
    engine = RuleEngine(clock=lambda: FIXED_NOW)
    engine.load_policy(str(policy_file))

    deps = [make_dependency("svc", license_type="AGPL-3.0")]
    assert engine.evaluate(build_facts(deps, {})) == ["Package svc uses forbidden license: AGPL-3.0"]
    assert "forbidden_license" in engine.rule_set.render()
