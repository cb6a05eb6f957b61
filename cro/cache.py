from __future__ import annotations

import copy
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable

from . import db
from .settings import settings
from .upstream import Orchestrator

BLANK = "<blank>"


@dataclass(frozen=True)
class StackCacheEntry:
    name: str
    stacks: list[dict[str, Any]]
    fetched_at: float


class StackCache:
    """Read-through cache of stack descriptions.

    One lock guards the whole map and is held across the upstream call, so
    describes are never issued in parallel, even for unrelated names. That
    keeps the describe rate under the API's throttling limits.

    A failed refresh leaves the stale entry in place; the next caller
    retries the fetch.

    Callers get their own copy of the description.
    """

    def __init__(
        self,
        upstream: Orchestrator,
        ttl_s: float | None = None,
        always_fresh: bool | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.upstream = upstream
        self.ttl_s = float(settings.stack_cache_ttl_s if ttl_s is None else ttl_s)
        self.always_fresh = settings.always_fresh if always_fresh is None else always_fresh
        self.clock = clock
        self.lock = Lock()
        self.entries: dict[str, StackCacheEntry] = {}

    def describe_stack(self, name: str) -> list[dict[str, Any]]:
        return self._describe(name)

    def describe_stacks(self) -> list[dict[str, Any]]:
        return self._describe(None)

    def _describe(self, name: str | None) -> list[dict[str, Any]]:
        key = name or BLANK
        with self.lock:
            now = self.clock()
            entry = self.entries.get(key)
            if entry is not None and not self.always_fresh and now - entry.fetched_at < self.ttl_s:
                db.log_event("DEBUG", f"stack cache hit age={now - entry.fetched_at:.2f}s", resource=key)
                return copy.deepcopy(entry.stacks)

            age = "none" if entry is None else f"{now - entry.fetched_at:.2f}s"
            db.log_event("DEBUG", f"stack cache miss age={age}", resource=key)
            stacks = self.upstream.describe_stacks(name)
            self.entries[key] = StackCacheEntry(name=key, stacks=stacks, fetched_at=self.clock())
            return copy.deepcopy(stacks)

    def invalidate(self, name: str) -> None:
        with self.lock:
            dropped = self.entries.pop(name, None)
            # The bulk description contains every named stack too.
            self.entries.pop(BLANK, None)
        if dropped is not None:
            db.log_event("INFO", "stack cache invalidated", resource=name)

    def update_stack(
        self, name: str, template_url: str, parameters: dict[str, str], capabilities: list[str] | None = None
    ) -> None:
        """Write through to the stack, dropping its cached description on both sides of the call."""
        self.invalidate(name)
        self.upstream.update_stack(name, template_url, parameters, capabilities or ["CAPABILITY_IAM"])
        self.invalidate(name)
