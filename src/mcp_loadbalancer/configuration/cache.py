"""Transaction- and scope-aware cache for parsed configuration entities.

The engine has no change notifications, so invalidation is coarse: any
write under a scope drops every cached read for that scope. Entries live
in a trie keyed ``transaction -> scope -> kind`` so one call can drop a
whole subtree.

Every entry is stamped with the configuration version current when it was
stored. The cache also tracks the last known version per transaction; an
entry older than that version is reported as a miss.

Usage:
    cache = ConfigurationCache(enabled=True)
    cache.set_all(kind, scope, "", rules, version=4)
    entry = cache.get(kind, scope, "")
    if entry is not None:
        rules, version = entry.value, entry.version
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Hashable, Optional

from .scope import Scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheKind:
    """Entity type, plus the rule type for entities that have one."""
    entity_type: str
    rule_type: Optional[str] = None

    def __str__(self) -> str:
        if self.rule_type:
            return f"{self.entity_type}[{self.rule_type}]"
        return self.entity_type


@dataclass(frozen=True)
class CacheEntry:
    """A cached entity or collection with the version it was read at."""
    value: Any
    version: int


@dataclass
class _Bucket:
    collection: Optional[CacheEntry] = None
    items: dict[Hashable, CacheEntry] = field(default_factory=dict)


def _copy(value: Any) -> Any:
    if isinstance(value, list):
        return [item.model_copy(deep=True) for item in value]
    return value.model_copy(deep=True)


class ConfigurationCache:
    """In-memory cache shared by every caller of a configuration client.

    All methods are safe to call from several threads or tasks; each call
    is one critical section. A disabled cache misses on every lookup and
    ignores every write.
    """

    def __init__(self, enabled: bool = True):
        self._enabled = enabled
        self._lock = threading.Lock()
        self._entries: dict[str, dict[Scope, dict[CacheKind, _Bucket]]] = {}
        self._versions: dict[str, int] = {}
        self._hits = 0
        self._misses = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    # === Lookups ===

    def get(self, kind: CacheKind, scope: Scope, transaction_id: str) -> Optional[CacheEntry]:
        """Get the cached collection of ``kind`` under a scope."""
        if not self._enabled:
            return None
        with self._lock:
            bucket = self._bucket(transaction_id, scope, kind)
            entry = bucket.collection if bucket else None
            entry = self._checked(transaction_id, entry)
            return CacheEntry(_copy(entry.value), entry.version) if entry else None

    def get_one(
        self,
        kind: CacheKind,
        key: Hashable,
        scope: Scope,
        transaction_id: str,
    ) -> Optional[CacheEntry]:
        """Get one cached entity by key under a scope."""
        if not self._enabled:
            return None
        with self._lock:
            bucket = self._bucket(transaction_id, scope, kind)
            entry = bucket.items.get(key) if bucket else None
            entry = self._checked(transaction_id, entry)
            return CacheEntry(_copy(entry.value), entry.version) if entry else None

    # === Population ===

    def set_all(
        self,
        kind: CacheKind,
        scope: Scope,
        transaction_id: str,
        collection: list,
        version: int,
    ) -> None:
        """Store a collection read at ``version``."""
        if not self._enabled:
            return
        with self._lock:
            if self._outdated(transaction_id, version):
                return
            bucket = self._bucket(transaction_id, scope, kind, create=True)
            bucket.collection = CacheEntry(_copy(collection), version)

    def set(
        self,
        kind: CacheKind,
        key: Hashable,
        scope: Scope,
        transaction_id: str,
        entity: Any,
        version: int,
    ) -> None:
        """Store one entity read at ``version``."""
        if not self._enabled:
            return
        with self._lock:
            if self._outdated(transaction_id, version):
                return
            bucket = self._bucket(transaction_id, scope, kind, create=True)
            bucket.items[key] = CacheEntry(_copy(entity), version)

    # === Invalidation ===

    def invalidate_parent(self, transaction_id: str, scope: Scope) -> None:
        """Drop every entry of every kind cached under a scope."""
        if not self._enabled:
            return
        with self._lock:
            scopes = self._entries.get(transaction_id)
            if scopes is not None:
                scopes.pop(scope, None)
        logger.debug(f"Invalidated {scope} in transaction {transaction_id or '<none>'}")

    def invalidate_frontend(
        self,
        transaction_id: str,
        name: str,
        kind: Optional[CacheKind] = None,
    ) -> None:
        """Drop entries under one frontend, optionally only of one kind."""
        self._invalidate_scope(transaction_id, Scope("frontend", name), kind)

    def invalidate_backend(
        self,
        transaction_id: str,
        name: str,
        kind: Optional[CacheKind] = None,
    ) -> None:
        """Drop entries under one backend, optionally only of one kind."""
        self._invalidate_scope(transaction_id, Scope("backend", name), kind)

    def invalidate_transaction(self, transaction_id: str) -> None:
        """Drop every entry cached for a transaction."""
        if not self._enabled:
            return
        with self._lock:
            self._entries.pop(transaction_id, None)
        logger.debug(f"Invalidated transaction {transaction_id or '<none>'}")

    def discard_transaction(self, transaction_id: str) -> None:
        """Forget a finished transaction: its entries and its version."""
        if not self._enabled:
            return
        with self._lock:
            self._entries.pop(transaction_id, None)
            self._versions.pop(transaction_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._versions.clear()

    # === Versions ===

    def get_version(self, transaction_id: str) -> Optional[int]:
        """Last known version for a transaction, or None."""
        if not self._enabled:
            return None
        with self._lock:
            return self._versions.get(transaction_id)

    def set_version(self, transaction_id: str, version: int) -> None:
        """Record a version for a transaction. Versions never move backwards."""
        if not self._enabled:
            return
        with self._lock:
            current = self._versions.get(transaction_id)
            if current is None or version > current:
                self._versions[transaction_id] = version

    def stats(self) -> dict:
        with self._lock:
            entries = sum(
                len(bucket.items) + (1 if bucket.collection else 0)
                for scopes in self._entries.values()
                for kinds in scopes.values()
                for bucket in kinds.values()
            )
            return {
                "enabled": self._enabled,
                "hits": self._hits,
                "misses": self._misses,
                "entries": entries,
                "transactions": len(self._entries),
            }

    # === Internals (callers hold the lock) ===

    def _bucket(
        self,
        transaction_id: str,
        scope: Scope,
        kind: CacheKind,
        create: bool = False,
    ) -> Optional[_Bucket]:
        if not create:
            return self._entries.get(transaction_id, {}).get(scope, {}).get(kind)
        kinds = self._entries.setdefault(transaction_id, {}).setdefault(scope, {})
        return kinds.setdefault(kind, _Bucket())

    def _outdated(self, transaction_id: str, version: int) -> bool:
        current = self._versions.get(transaction_id)
        return current is not None and version < current

    def _checked(self, transaction_id: str, entry: Optional[CacheEntry]) -> Optional[CacheEntry]:
        if entry is None or self._outdated(transaction_id, entry.version):
            self._misses += 1
            return None
        self._hits += 1
        return entry

    def _invalidate_scope(
        self,
        transaction_id: str,
        scope: Scope,
        kind: Optional[CacheKind],
    ) -> None:
        if kind is None:
            self.invalidate_parent(transaction_id, scope)
            return
        if not self._enabled:
            return
        with self._lock:
            kinds = self._entries.get(transaction_id, {}).get(scope)
            if kinds is not None:
                kinds.pop(kind, None)
        logger.debug(f"Invalidated {kind} under {scope} in transaction {transaction_id or '<none>'}")
