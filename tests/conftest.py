"""Shared fixtures: a fake HTTP session and a fixed clock."""

import json
from datetime import datetime, timezone

import pytest
from requests.structures import CaseInsensitiveDict

from dependency_governance.config import RegistrySettings
from dependency_governance.models import Dependency, DependencyMetadata, Language, License, Module

FIXED_NOW = datetime(2025, 10, 16, 12, 0, tzinfo=timezone.utc)

INVALID_JSON = object()


class FakeResponse:
    """Serves *payload* as a JSON body; ``on_chunk`` runs after each chunk is handed out."""

    def __init__(self, status_code=200, payload=None, headers=None, chunk_size=None, on_chunk=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = CaseInsensitiveDict(headers or {})
        self.chunk_size = chunk_size
        self.on_chunk = on_chunk
        self.chunks_served = 0
        self.closed = False

    @property
    def content(self):
        if self._payload is INVALID_JSON:
            return b"not json"
        return json.dumps(self._payload).encode("utf-8")

    def iter_content(self, chunk_size=1):
        body = self.content
        size = self.chunk_size or chunk_size
        for start in range(0, len(body), size):
            self.chunks_served += 1
            yield body[start:start + size]
            if self.on_chunk is not None:
                self.on_chunk()

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """Stands in for requests.Session; unknown URLs answer 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def add(self, url, response):
        self.routes[url] = response

    def get(self, url, headers=None, timeout=None, stream=False):
        self.calls.append({"url": url, "headers": headers or {}, "timeout": timeout, "stream": stream})
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, {"error": "not found"})
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route()
        return route

    def urls(self):
        return [call["url"] for call in self.calls]


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def settings():
    return RegistrySettings()


@pytest.fixture
def fixed_now():
    return FIXED_NOW


def make_dependency(name, version="1.0.0", license_type=None, language=Language.GO, **metadata):
    license = License(name=license_type, type=license_type) if license_type else None
    return Dependency(
        Module(name, version, language),
        license=license,
        metadata=DependencyMetadata(**metadata),
    )
