"""
apps.config_core.services.config_cache
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Memoises resolver results per ``(key, context)`` fingerprint.

Entries live in a dedicated Django cache alias (``CONFIG_ENGINE
["CACHE_ALIAS"]``), so a deployment can point it at LocMem, Redis or
Memcached without code changes.  The cache never owns data: clearing it at
any time costs only latency.

Expiry tiers
------------
* younger than the **soft** TTL – served as is;
* between soft and **hard** TTL – recomputed synchronously by the caller;
  the stale value is served only if that recompute fails with a database
  error, never while a refresh is merely pending;
* older than the hard TTL – recomputed, errors propagate.

Both tiers are cut short by the resolution's ``next_change_at``, so a
scheduled change is never hidden behind a cached value.

Invalidation
------------
Any write to a key invalidates **every** cached context of that key.  Each
key has a generation token that is part of every entry's cache key;
:meth:`ConfigCache.invalidate` rotates the token, which orphans all entries
at once on any backend (orphans age out with the hard TTL).  Writers
rotate it again when their transaction commits, so an entry cached from the
pre-commit state by a concurrent reader never outlives the commit.
"""
from __future__ import annotations

import hashlib
import json
import threading
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, NamedTuple

import structlog
from django.core.cache import caches
from django.db import DatabaseError
from django.utils import timezone

from apps.config_core.scope import Scope
from common.conf import engine_setting
from .config_resolver import ConfigResolver, Resolution

logger = structlog.get_logger(__name__)

ResolveFn = Callable[[str, Scope, datetime], Resolution]


class _CachedResolution(NamedTuple):
    resolution: Resolution
    stored_at: datetime
    fresh_until: datetime
    stale_until: datetime


class ConfigCache:
    """
    Read-through cache in front of a resolver.

    Args:
        resolver: ``(key, context, as_of) -> Resolution``; defaults to
            :meth:`ConfigResolver.resolve`.
        alias: Django cache alias; defaults to ``CONFIG_ENGINE["CACHE_ALIAS"]``.
        soft_ttl / hard_ttl: Seconds; default to the engine settings.
    """

    def __init__(
        self,
        resolver: ResolveFn | None = None,
        *,
        alias: str | None = None,
        soft_ttl: int | None = None,
        hard_ttl: int | None = None,
    ) -> None:
        self._resolver = resolver or ConfigResolver.resolve
        self.alias = alias or engine_setting("CACHE_ALIAS")
        self.soft_ttl = engine_setting("CACHE_SOFT_TTL") if soft_ttl is None else soft_ttl
        self.hard_ttl = engine_setting("CACHE_HARD_TTL") if hard_ttl is None else hard_ttl
        if self.soft_ttl > self.hard_ttl:
            raise ValueError("CACHE_SOFT_TTL must not exceed CACHE_HARD_TTL.")
        self._stats: Counter = Counter()
        self._stats_lock = threading.Lock()

    @property
    def backend(self):
        return caches[self.alias]

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def fingerprint(key: str, context: Scope) -> str:
        """Stable digest of ``(key, persona, agent_id, workflow_id)``."""
        payload = json.dumps([key, context.persona, context.agent_id, context.workflow_id])
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()

    @staticmethod
    def _generation_key(key: str) -> str:
        return "config-value-gen:" + hashlib.sha1(key.encode("utf-8")).hexdigest()

    def _generation(self, key: str) -> str:
        gen_key = self._generation_key(key)
        token = self.backend.get(gen_key)
        if token is None:
            # add() keeps whichever token another process stored first.
            self.backend.add(gen_key, uuid.uuid4().hex, None)
            token = self.backend.get(gen_key)
        return token

    def _entry_key(self, key: str, context: Scope) -> str:
        return f"config-value:{self._generation(key)}:{self.fingerprint(key, context)}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, key: str, context: Scope | None = None) -> Resolution:
        """
        Return the current resolution of *key* for *context*, from cache
        when fresh.

        Raises:
            UnknownKeyError: propagated from the resolver; never cached.
        """
        context = context or Scope()
        now = timezone.now()
        entry_key = self._entry_key(key, context)
        entry: _CachedResolution | None = self.backend.get(entry_key)

        if entry is not None and now < entry.fresh_until:
            self._count("hits")
            return entry.resolution

        stale = entry if entry is not None and now < entry.stale_until else None
        try:
            resolution = self._resolver(key, context, now)
        except DatabaseError as exc:
            if stale is None:
                raise
            self._count("stale_served")
            logger.warning(
                "config_cache_stale_served",
                key=key,
                context=str(context),
                age_seconds=(now - stale.stored_at).total_seconds(),
                error=str(exc),
            )
            return stale.resolution

        self._count("refreshes" if entry is not None else "misses")
        self._store(entry_key, resolution, now)
        return resolution

    def invalidate(self, key: str) -> None:
        """Drop every cached context of *key*, whatever scope was written."""
        self.backend.set(self._generation_key(key), uuid.uuid4().hex, None)
        self._count("invalidations")
        logger.debug("config_cache_invalidated", key=key)

    def clear(self) -> None:
        """Flush the whole alias.  Always safe; the cache owns no data."""
        self.backend.clear()
        self._count("clears")
        logger.info("config_cache_cleared", alias=self.alias)

    def stats(self) -> dict:
        """Counters for this process since start-up, plus the TTL settings."""
        with self._stats_lock:
            counters = dict(self._stats)
        return {
            "alias": self.alias,
            "soft_ttl": self.soft_ttl,
            "hard_ttl": self.hard_ttl,
            "hits": counters.get("hits", 0),
            "misses": counters.get("misses", 0),
            "refreshes": counters.get("refreshes", 0),
            "stale_served": counters.get("stale_served", 0),
            "invalidations": counters.get("invalidations", 0),
            "clears": counters.get("clears", 0),
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _store(self, entry_key: str, resolution: Resolution, now: datetime) -> None:
        fresh_until = now + timedelta(seconds=self.soft_ttl)
        stale_until = now + timedelta(seconds=self.hard_ttl)
        if resolution.next_change_at is not None:
            fresh_until = min(fresh_until, resolution.next_change_at)
            stale_until = min(stale_until, resolution.next_change_at)
        entry = _CachedResolution(resolution, now, fresh_until, stale_until)
        self.backend.set(entry_key, entry, self.hard_ttl)

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1
