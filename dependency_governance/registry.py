"""
Ecosystem-specific registry metadata clients.

Every client answers ``get_metadata(name, version)`` with the publish date and
whatever popularity figures its registry exposes. Lookups are cache-first; a
miss issues exactly one ecosystem request (plus one retry with the alternate
version-tag convention when the first answer is "not found").
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import requests

from .cache import CacheStats, TTLCache, cache_key
from .config import RegistrySettings
from .errors import (
    FetchCancelledError,
    NetworkError,
    NotFoundError,
    ParseError,
    RateLimitError,
    RegistryError,
)
from .interfaces import RegistryClient
from .models import Metadata
from .time_utils import parse_timestamp


logger = logging.getLogger(__name__)

# Substituted when a registry does not publish download counts. High enough
# that a missing figure never produces a download violation on its own.
CONSERVATIVE_TOTAL_DOWNLOADS = 1000
CONSERVATIVE_RECENT_DOWNLOADS = 100
# Reported when a figure is unavailable and no substitute is appropriate.
DOWNLOADS_UNAVAILABLE = -1

BODY_CHUNK_SIZE = 8192


class CachedRegistryClient(RegistryClient):
    """Cache, HTTP and error-mapping plumbing shared by the ecosystem clients."""

    ecosystem = ""

    def __init__(
        self,
        settings: Optional[RegistrySettings] = None,
        session: Optional[requests.Session] = None,
        cache: Optional[TTLCache] = None,
    ) -> None:
        self.settings = settings or RegistrySettings()
        self.session = session or requests.Session()
        self.cache = cache or TTLCache(self.settings.cache_ttl)

    def get_metadata(
        self,
        name: str,
        version: str,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Metadata:
        key = cache_key(name, version)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        self._check_cancelled(cancel, name, version)
        logger.info("Fetching %s metadata for %s", self.ecosystem, key)
        meta = self._fetch_with_fallback(name, version, timeout, cancel)
        # A cancelled fetch must not populate the cache.
        self._check_cancelled(cancel, name, version)
        self.cache.put(key, meta)
        return meta

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def version_candidates(self, version: str) -> List[str]:
        """Preferred version tag first, then the alternate convention."""
        stripped = version[1:] if _has_v_prefix(version) else version
        return _unique([stripped, version])

    def _fetch(
        self, name: str, version: str, timeout: Optional[float], cancel: Optional[threading.Event] = None
    ) -> Metadata:
        raise NotImplementedError

    def _fetch_with_fallback(
        self, name: str, version: str, timeout: Optional[float], cancel: Optional[threading.Event]
    ) -> Metadata:
        candidates = self.version_candidates(version)
        for index, candidate in enumerate(candidates):
            try:
                return self._fetch(name, candidate, timeout, cancel)
            except NotFoundError:
                if index == len(candidates) - 1:
                    raise
                logger.debug(
                    "%s: %s@%s not found, retrying as %s",
                    self.ecosystem, name, candidate, candidates[index + 1],
                )
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                # Well-formed JSON with an unexpected shape.
                raise ParseError(self.ecosystem, "package metadata", e) from e
        raise NotFoundError(self.ecosystem, name, version)

    def _check_cancelled(self, cancel: Optional[threading.Event], name: str, version: str) -> None:
        if cancel is not None and cancel.is_set():
            raise FetchCancelledError(
                f"{self.ecosystem}: lookup of {cache_key(name, version)} cancelled",
                self.ecosystem,
            )

    def _headers(self) -> Dict[str, str]:
        return {"User-Agent": self.settings.user_agent, "Accept": "application/json"}

    def _get_json(
        self,
        url: str,
        name: str,
        version: str,
        timeout: Optional[float],
        cancel: Optional[threading.Event] = None,
        what: str = "package metadata",
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        request_headers = self._headers()
        if headers:
            request_headers.update(headers)
        try:
            with self.session.get(
                url,
                headers=request_headers,
                timeout=timeout if timeout is not None else self.settings.timeout,
                stream=True,
            ) as response:
                self._raise_for_status(response, url, name, version)
                body = self._read_body(response, name, version, cancel)
        except requests.RequestException as e:
            raise NetworkError(self.ecosystem, url, e) from e
        try:
            return json.loads(body)
        except ValueError as e:
            raise ParseError(self.ecosystem, what, e) from e

    def _read_body(
        self, response: requests.Response, name: str, version: str, cancel: Optional[threading.Event]
    ) -> bytes:
        """Read the body in chunks, abandoning the transfer once *cancel* is set."""
        chunks: List[bytes] = []
        for chunk in response.iter_content(chunk_size=BODY_CHUNK_SIZE):
            if cancel is not None and cancel.is_set():
                break
            chunks.append(chunk)
        if cancel is not None and cancel.is_set():
            response.close()
            self._check_cancelled(cancel, name, version)
        return b"".join(chunks)

    def _raise_for_status(self, response: requests.Response, url: str, name: str, version: str) -> None:
        status = response.status_code
        if status == 200:
            return
        if status in (404, 410):
            raise NotFoundError(self.ecosystem, name, version, f"HTTP {status}")
        if self._is_rate_limited(response):
            raise _rate_limit_error(self.ecosystem, response, url)
        if status >= 500:
            raise NetworkError(self.ecosystem, url, f"server error: HTTP {status}")
        raise RegistryError(f"{self.ecosystem} registry returned HTTP {status} for {url}", self.ecosystem)

    def _is_rate_limited(self, response: requests.Response) -> bool:
        if response.status_code == 429:
            return True
        return response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0"

    def _parse_publish_date(self, value: Any, what: str) -> datetime:
        published = parse_timestamp(value) if isinstance(value, str) else None
        if published is None:
            raise ParseError(self.ecosystem, what, f"invalid timestamp {value!r}")
        return published


class GoProxyClient(CachedRegistryClient):
    """Module proxy ``@v/<version>.info`` lookups. The proxy has no download stats."""

    ecosystem = "go"

    def version_candidates(self, version: str) -> List[str]:
        if _has_v_prefix(version):
            return _unique([version, version[1:]])
        return _unique([f"v{version}", version])

    def _fetch(
        self, name: str, version: str, timeout: Optional[float], cancel: Optional[threading.Event] = None
    ) -> Metadata:
        url = f"{self.settings.url('go')}/{escape_module_path(name)}/@v/{escape_module_path(version)}.info"
        info = self._get_json(url, name, version, timeout, cancel=cancel, what="module info")
        if not isinstance(info, dict):
            raise ParseError(self.ecosystem, "module info", "expected a JSON object")
        return Metadata(
            publish_date=self._parse_publish_date(info.get("Time"), "module info"),
            total_downloads=CONSERVATIVE_TOTAL_DOWNLOADS,
            recent_downloads=CONSERVATIVE_RECENT_DOWNLOADS,
            source=self.ecosystem,
            version=info.get("Version") or version,
        )


class NpmClient(CachedRegistryClient):
    """npm registry packument plus the downloads point API."""

    ecosystem = "npm"

    def _fetch(
        self, name: str, version: str, timeout: Optional[float], cancel: Optional[threading.Event] = None
    ) -> Metadata:
        escaped = quote(name, safe="@")
        url = f"{self.settings.url('npm')}/{escaped}"
        data = self._get_json(url, name, version, timeout, cancel=cancel)
        if not isinstance(data, dict):
            raise ParseError(self.ecosystem, "package metadata", "expected a JSON object")

        times = data.get("time") or {}
        if version not in times:
            raise NotFoundError(self.ecosystem, name, version, "version missing from package metadata")
        publish_date = self._parse_publish_date(times[version], "publish date")

        recent = self._last_month_downloads(name, version, timeout, cancel)
        if not recent:
            # Missing or zero counts are treated as unpublished.
            total, recent = CONSERVATIVE_TOTAL_DOWNLOADS, CONSERVATIVE_RECENT_DOWNLOADS
        else:
            # npm only reports windowed counts; last month stands in for the total.
            total = recent

        return Metadata(
            publish_date=publish_date,
            total_downloads=total,
            recent_downloads=recent,
            source=self.ecosystem,
            version=version,
        )

    def _last_month_downloads(
        self, name: str, version: str, timeout: Optional[float], cancel: Optional[threading.Event]
    ) -> Optional[int]:
        url = f"{self.settings.url('npm_downloads')}/last-month/{quote(name, safe='@')}"
        try:
            data = self._get_json(url, name, version, timeout, cancel=cancel, what="download stats")
        except RegistryError as e:
            logger.debug("npm download stats unavailable for %s: %s", name, e)
            return None
        downloads = data.get("downloads") if isinstance(data, dict) else None
        if not isinstance(downloads, int) or isinstance(downloads, bool):
            return None
        return downloads


class PyPIClient(CachedRegistryClient):
    """PyPI JSON API. Download counts are no longer published there."""

    ecosystem = "pypi"

    def _fetch(
        self, name: str, version: str, timeout: Optional[float], cancel: Optional[threading.Event] = None
    ) -> Metadata:
        url = f"{self.settings.url('pypi')}/{name}/{version}/json"
        data = self._get_json(url, name, version, timeout, cancel=cancel)
        if not isinstance(data, dict):
            raise ParseError(self.ecosystem, "package metadata", "expected a JSON object")

        files = data.get("urls") or (data.get("releases") or {}).get(version) or []
        if not files:
            raise NotFoundError(self.ecosystem, name, version, "no release files")
        first = files[0]
        upload_time = first.get("upload_time_iso_8601") or first.get("upload_time")
        return Metadata(
            publish_date=self._parse_publish_date(upload_time, "upload time"),
            total_downloads=CONSERVATIVE_TOTAL_DOWNLOADS,
            recent_downloads=CONSERVATIVE_RECENT_DOWNLOADS,
            source=self.ecosystem,
            version=(data.get("info") or {}).get("version") or version,
        )


class CratesClient(CachedRegistryClient):
    """crates.io API: crate-wide total and per-version download counts."""

    ecosystem = "crates"

    def _fetch(
        self, name: str, version: str, timeout: Optional[float], cancel: Optional[threading.Event] = None
    ) -> Metadata:
        url = f"{self.settings.url('crates')}/crates/{name}"
        data = self._get_json(url, name, version, timeout, cancel=cancel, what="crate metadata")
        if not isinstance(data, dict):
            raise ParseError(self.ecosystem, "crate metadata", "expected a JSON object")

        for entry in data.get("versions") or []:
            if entry.get("num") != version:
                continue
            return Metadata(
                publish_date=self._parse_publish_date(entry.get("created_at"), "created_at"),
                total_downloads=int((data.get("crate") or {}).get("downloads", DOWNLOADS_UNAVAILABLE)),
                recent_downloads=int(entry.get("downloads", DOWNLOADS_UNAVAILABLE)),
                source=self.ecosystem,
                version=version,
            )
        raise NotFoundError(self.ecosystem, name, version, "version missing from crate metadata")


class NuGetClient(CachedRegistryClient):
    """NuGet v3 registration API, discovered through the service index."""

    ecosystem = "nuget"

    def __init__(
        self,
        settings: Optional[RegistrySettings] = None,
        session: Optional[requests.Session] = None,
        cache: Optional[TTLCache] = None,
    ) -> None:
        super().__init__(settings, session, cache)
        self._registration_base: Optional[str] = None

    def _fetch(
        self, name: str, version: str, timeout: Optional[float], cancel: Optional[threading.Event] = None
    ) -> Metadata:
        base = self._discover_registration_base(name, version, timeout, cancel)
        url = f"{base}/{name.lower()}/index.json"
        index = self._get_json(url, name, version, timeout, cancel=cancel, what="registration index")
        if not isinstance(index, dict):
            raise ParseError(self.ecosystem, "registration index", "expected a JSON object")

        for page in index.get("items") or []:
            leaves = page.get("items")
            if leaves is None and page.get("@id"):
                page_data = self._get_json(page["@id"], name, version, timeout, cancel=cancel, what="registration page")
                leaves = page_data.get("items") if isinstance(page_data, dict) else None
            for leaf in leaves or []:
                entry = leaf.get("catalogEntry") or {}
                if str(entry.get("version", "")).lower() != version.lower():
                    continue
                return Metadata(
                    publish_date=self._parse_publish_date(entry.get("published"), "published"),
                    total_downloads=CONSERVATIVE_TOTAL_DOWNLOADS,
                    recent_downloads=CONSERVATIVE_RECENT_DOWNLOADS,
                    source=self.ecosystem,
                    version=entry.get("version"),
                )
        raise NotFoundError(self.ecosystem, name, version, "version missing from registration index")

    def _discover_registration_base(
        self, name: str, version: str, timeout: Optional[float], cancel: Optional[threading.Event]
    ) -> str:
        if self._registration_base:
            return self._registration_base
        url = self.settings.url("nuget")
        index = self._get_json(url, name, version, timeout, cancel=cancel, what="service index")
        for resource in (index.get("resources") or []) if isinstance(index, dict) else []:
            if str(resource.get("@type", "")).startswith("RegistrationsBaseUrl") and resource.get("@id"):
                self._registration_base = resource["@id"].rstrip("/")
                return self._registration_base
        raise ParseError(self.ecosystem, "service index", "RegistrationsBaseUrl resource not found")


class GitHubReleaseClient(CachedRegistryClient):
    """GitHub releases-by-tag API for tools distributed as release assets."""

    ecosystem = "github"

    def supports_repo(self, repo: str) -> bool:
        parts = normalize_github_repo(repo).split("/")
        return len(parts) == 2 and all(parts)

    def version_candidates(self, version: str) -> List[str]:
        if not _has_v_prefix(version) and "." in version:
            return _unique([f"v{version}", version])
        return _unique([version, version[1:]] if _has_v_prefix(version) else [version])

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["Accept"] = "application/vnd.github.v3+json"
        if self.settings.github_token:
            headers["Authorization"] = f"token {self.settings.github_token}"
        return headers

    def _is_rate_limited(self, response: requests.Response) -> bool:
        return response.status_code in (403, 429)

    def _fetch(
        self, name: str, version: str, timeout: Optional[float], cancel: Optional[threading.Event] = None
    ) -> Metadata:
        if not self.supports_repo(name):
            raise RegistryError(
                f"unsupported repository format: {name} (expected owner/repo)", self.ecosystem
            )
        repo = normalize_github_repo(name)
        url = f"{self.settings.url('github')}/repos/{repo}/releases/tags/{version}"
        release = self._get_json(url, name, version, timeout, cancel=cancel, what="release response")
        if not isinstance(release, dict):
            raise ParseError(self.ecosystem, "release response", "expected a JSON object")

        total = 0
        for asset in release.get("assets") or []:
            total += int(asset.get("download_count") or 0)
        published = release.get("published_at") or release.get("created_at")
        return Metadata(
            publish_date=self._parse_publish_date(published, "published_at"),
            total_downloads=total,
            recent_downloads=DOWNLOADS_UNAVAILABLE,
            source=self.ecosystem,
            version=release.get("tag_name") or version,
        )


_CLIENTS = {
    "go": GoProxyClient,
    "typescript": NpmClient,
    "javascript": NpmClient,
    "npm": NpmClient,
    "python": PyPIClient,
    "pypi": PyPIClient,
    "rust": CratesClient,
    "crates": CratesClient,
    "csharp": NuGetClient,
    "nuget": NuGetClient,
    "github": GitHubReleaseClient,
}


def new_client(
    language: str,
    settings: Optional[RegistrySettings] = None,
    session: Optional[requests.Session] = None,
) -> Optional[CachedRegistryClient]:
    """Create the registry client for a language or ecosystem name."""
    client_cls = _CLIENTS.get(str(getattr(language, "value", language)).lower())
    if client_cls is None:
        return None
    return client_cls(settings=settings, session=session)


def escape_module_path(path: str) -> str:
    """Case-encode a module path the way the module proxy expects (``A`` -> ``!a``)."""
    return "".join(f"!{ch.lower()}" if ch.isupper() else ch for ch in path)


def normalize_github_repo(repo: str) -> str:
    for prefix in ("https://", "http://", "github.com/"):
        if repo.startswith(prefix):
            repo = repo[len(prefix):]
    return repo.strip("/")


def _rate_limit_error(source: str, response: requests.Response, url: str) -> RateLimitError:
    headers = response.headers
    limit = _int_header(headers, "X-RateLimit-Limit", 0)
    remaining = _int_header(headers, "X-RateLimit-Remaining", 0)

    retry_after: Optional[datetime] = None
    reset = _int_header(headers, "X-RateLimit-Reset", None)
    if reset is not None:
        retry_after = datetime.fromtimestamp(reset, tz=timezone.utc)
    else:
        delay = _int_header(headers, "Retry-After", None)
        if delay is not None:
            retry_after = datetime.now(timezone.utc) + timedelta(seconds=delay)

    if response.status_code == 403:
        message = f"HTTP 403 (likely rate limit) for {url}"
    else:
        message = f"rate limit exceeded for {url}"
    return RateLimitError(source, message, retry_after=retry_after, limit=limit, remaining=remaining)


def _int_header(headers: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    value = headers.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _has_v_prefix(version: str) -> bool:
    return len(version) > 1 and version[0] in "vV" and version[1].isdigit()


def _unique(values: List[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen
