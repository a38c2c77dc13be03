"""
Policy document loading and section parsing.

A policy document is YAML (or JSON, which YAML accepts) with two recognised
top-level sections::

    licenses:
      forbidden: [GPL-3.0, AGPL-3.0]
    cooling:
      enabled: true
      min_age_days: 7
      exceptions:
        - pattern: "@myorg/*"
          reason: internal packages
          until: "2026-12-31"

Anything else in the document is ignored.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .cooling import CoolingConfig, CoolingException
from .errors import PolicyDocumentError


logger = logging.getLogger(__name__)

COOLING_DEFAULTS = {
    "min_age_days": 7,
    "min_downloads": 100,
    "min_downloads_recent": 10,
    "alert_only": False,
    "grace_period_days": 3,
}


def load_policy_document(path: str) -> Dict[str, Any]:
    """Read and parse a policy file into a mapping.

    Raises:
        PolicyDocumentError: the path is unsafe, unreadable, or not a mapping.
    """
    policy_path = Path(path)
    if ".." in policy_path.parts:
        raise PolicyDocumentError(f"invalid policy path {path!r}: directory traversal detected")
    try:
        text = policy_path.resolve().read_text(encoding="utf-8")
    except OSError as e:
        raise PolicyDocumentError(f"policy file not accessible: {e}") from e
    return parse_policy_document(text, source=str(policy_path))


def parse_policy_document(text: str, source: str = "<policy>") -> Dict[str, Any]:
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PolicyDocumentError(f"failed to parse policy {source}: {e}") from e
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise PolicyDocumentError(
            f"policy {source} must be a mapping, got {type(document).__name__}"
        )
    return document


def parse_forbidden_licenses(document: Dict[str, Any]) -> Optional[List[str]]:
    """Return the forbidden SPDX identifiers, or None when the section is absent or malformed."""
    licenses = document.get("licenses")
    if not isinstance(licenses, dict):
        return None
    forbidden = licenses.get("forbidden")
    if forbidden is None:
        return None
    if not isinstance(forbidden, list):
        logger.warning("Ignoring licenses.forbidden: expected a list, got %s", type(forbidden).__name__)
        return None
    return [str(item) for item in forbidden]


def parse_cooling_config(document: Dict[str, Any]) -> Optional[CoolingConfig]:
    """Build a CoolingConfig from the ``cooling`` section.

    Returns None when the section is absent or malformed. Missing thresholds
    take the documented defaults; values of the wrong type are ignored.
    """
    section = document.get("cooling")
    if section is None:
        return None
    if not isinstance(section, dict):
        logger.warning("Ignoring cooling section: expected a mapping, got %s", type(section).__name__)
        return None

    if section.get("enabled") is not True:
        return CoolingConfig(enabled=False)

    values = dict(COOLING_DEFAULTS)
    for key in ("min_age_days", "min_downloads", "min_downloads_recent", "grace_period_days"):
        if _is_int(section.get(key)):
            values[key] = section[key]
    if isinstance(section.get("alert_only"), bool):
        values["alert_only"] = section["alert_only"]

    exceptions = section.get("exceptions")
    return CoolingConfig(
        enabled=True,
        exceptions=parse_exceptions(exceptions) if isinstance(exceptions, list) else [],
        **values,
    )


def parse_exceptions(raw: List[Any]) -> List[CoolingException]:
    """Keep well-formed exception entries; entries without a pattern are dropped."""
    result = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        pattern = _str_field(entry, "pattern")
        if not pattern:
            continue
        result.append(CoolingException(
            pattern=pattern,
            reason=_str_field(entry, "reason"),
            until=_str_field(entry, "until"),
            approved_by=_str_field(entry, "approved_by"),
        ))
    return result


def _str_field(entry: Dict[str, Any], key: str) -> str:
    value = entry.get(key)
    # YAML reads an unquoted 2026-12-31 as a date.
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value if isinstance(value, str) else ""


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
