"""
Attach registry cooling metadata to discovered dependencies.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import List, Optional, Sequence

from tqdm import tqdm

from .errors import FetchCancelledError, RegistryError
from .interfaces import RegistryClient
from .models import Dependency


logger = logging.getLogger(__name__)


def enrich_dependency(
    dep: Dependency,
    client: RegistryClient,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> Dependency:
    """Populate cooling metadata for one dependency in place.

    A local dependency, or one without a resolvable version, is marked local and gets no
    cooling metadata. A failed lookup never fails the analysis: the dependency
    is recorded as 365 days old with ``age_unknown`` and ``registry_error`` set.
    """
    if not dep.version or dep.metadata.is_local:
        dep.metadata.mark_local()
        return dep

    try:
        meta = client.get_metadata(dep.name, dep.version, timeout=timeout, cancel=cancel)
    except FetchCancelledError:
        raise
    except RegistryError as e:
        logger.warning("Registry lookup failed for %s@%s, assuming mature: %s", dep.name, dep.version, e)
        dep.metadata.mark_registry_failure(e)
        return dep

    dep.metadata.apply_registry_metadata(meta, now)
    return dep


def enrich_dependencies(
    dependencies: Sequence[Dependency],
    client: RegistryClient,
    max_workers: int = 8,
    show_progress: bool = False,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> List[Dependency]:
    """Enrich many dependencies concurrently against one client; order is preserved."""
    deps = list(dependencies)
    if not deps:
        return deps

    def _enrich(dep: Dependency) -> Dependency:
        return enrich_dependency(dep, client, now=now, timeout=timeout, cancel=cancel)

    workers = max(1, min(max_workers, len(deps)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = pool.map(_enrich, deps)
        enriched = list(tqdm(
            results,
            total=len(deps),
            desc="registry metadata",
            unit="pkg",
            disable=not show_progress,
        ))
    logger.info("Enriched %d dependencies via %s", len(enriched), getattr(client, "ecosystem", "registry"))
    return enriched
