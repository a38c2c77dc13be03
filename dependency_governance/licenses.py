"""
Best-effort license classification.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from .models import License

LICENSE_URLS = {
    "MIT": "https://opensource.org/licenses/MIT",
    "Apache-2.0": "https://www.apache.org/licenses/LICENSE-2.0",
    "BSD-3-Clause": "https://opensource.org/licenses/BSD-3-Clause",
    "BSD-2-Clause": "https://opensource.org/licenses/BSD-2-Clause",
    "GPL-3.0": "https://www.gnu.org/licenses/gpl-3.0.html",
    "GPL-2.0": "https://www.gnu.org/licenses/gpl-2.0.html",
    "LGPL-3.0": "https://www.gnu.org/licenses/lgpl-3.0.html",
    "ISC": "https://opensource.org/licenses/ISC",
    "MPL-2.0": "https://www.mozilla.org/en-US/MPL/2.0/",
    "Unlicense": "http://unlicense.org/",
}

LICENSE_FILE_NAMES = (
    "LICENSE",
    "LICENSE.txt",
    "LICENSE.md",
    "COPYING",
    "COPYING.txt",
    "NOTICE",
    "NOTICE.txt",
)

# Checked in order; more specific markers first.
_CLASSIFIERS = (
    ("BSD-3-Clause", lambda t: "BSD 3-CLAUSE" in t or "BSD-3-CLAUSE" in t),
    ("BSD-3-Clause", lambda t: "REDISTRIBUTION AND USE" in t and "THREE " in t),
    ("BSD-2-Clause", lambda t: "BSD 2-CLAUSE" in t or "BSD-2-CLAUSE" in t),
    ("Apache-2.0", lambda t: "APACHE LICENSE" in t or "APACHE 2.0" in t or "APACHE-2.0" in t),
    ("LGPL-3.0", lambda t: "GNU LESSER GENERAL PUBLIC LICENSE" in t or "LGPL" in t),
    ("GPL-3.0", lambda t: "GNU GENERAL PUBLIC LICENSE" in t and "VERSION 3" in t),
    ("GPL-3.0", lambda t: "GPL-3.0" in t),
    ("GPL-2.0", lambda t: "GPL-2.0" in t),
    ("MPL-2.0", lambda t: "MOZILLA PUBLIC LICENSE" in t or "MPL-2.0" in t),
    ("ISC", lambda t: re.search(r"\bISC\b", t) is not None),
    ("Unlicense", lambda t: "UNLICENSE" in t),
    ("MIT", lambda t: re.search(r"\bMIT\b", t) is not None),
)


def detect_license_type(name_or_content: str) -> str:
    """Classify a license name or license text; ``Unknown`` when nothing matches."""
    normalized = name_or_content.strip().upper()
    if not normalized:
        return "Unknown"
    for license_type, matches in _CLASSIFIERS:
        if matches(normalized):
            return license_type
    return "Unknown"


def license_url(license_type: str) -> str:
    return LICENSE_URLS.get(license_type, "")


def license_from_expression(expression: Optional[str], name: str = "") -> Optional[License]:
    """Build a License from a registry/manifest SPDX-style field."""
    if not expression or not isinstance(expression, str):
        return None
    license_type = detect_license_type(expression)
    return License(name=name or expression, type=license_type, url=license_url(license_type))


def find_license_file(module_dir: str) -> Optional[Path]:
    """Locate a license file at the top of a package directory."""
    root = Path(module_dir)
    if not root.is_dir():
        return None
    for name in LICENSE_FILE_NAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    matches = sorted(root.glob("LICENSE.*"))
    return matches[0] if matches else None


def license_from_file(path: Path) -> License:
    try:
        license_type = detect_license_type(path.read_text(encoding="utf-8", errors="replace"))
    except OSError:
        license_type = "Unknown"
    if license_type == "Unknown":
        license_type = detect_license_type(path.name)
    return License(name=path.name, type=license_type, url=license_url(license_type))
