"""
Runtime settings for registry clients.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional

from . import __version__

DEFAULT_REGISTRY_URLS: Dict[str, str] = {
    "go": "https://proxy.golang.org",
    "npm": "https://registry.npmjs.org",
    "npm_downloads": "https://api.npmjs.org/downloads/point",
    "pypi": "https://pypi.org/pypi",
    "crates": "https://crates.io/api/v1",
    "nuget": "https://api.nuget.org/v3/index.json",
    "github": "https://api.github.com",
}

DEFAULT_CACHE_TTL = timedelta(hours=24)
DEFAULT_TIMEOUT = 30.0


@dataclass
class RegistrySettings:
    """Endpoints, cache lifetime and HTTP options shared by registry clients."""

    registry_urls: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_REGISTRY_URLS))
    cache_ttl: timedelta = DEFAULT_CACHE_TTL
    timeout: float = DEFAULT_TIMEOUT
    user_agent: str = f"dependency-governance/{__version__}"
    github_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> "RegistrySettings":
        """Build settings, picking up the GitHub token from the environment."""
        return cls(github_token=os.environ.get("GITHUB_TOKEN") or None)

    def url(self, key: str) -> str:
        return self.registry_urls.get(key, DEFAULT_REGISTRY_URLS[key]).rstrip("/")
