"""Get/list/create/edit/delete for every entity type.

All entity types share one protocol:

- list/get: answer from the cache when possible, otherwise run the engine
  ``dump``/``show`` command, parse the output and populate the cache.
- create/edit/delete: validate the payload, run the engine commands under
  a transaction (the caller's, or an implicit one opened against the
  caller's version), then invalidate the cached views of the scope.

Engine commands are named ``l7-<type>-<op>`` for top-level entities and
``l7-<parent type>-<type>-<op> <parent name> ...`` for nested ones.

Rules are addressed by positional IDs: an ID is the rule's position in the
engine dump at the time of reading and shifts when rules are inserted or
removed before it. Treat IDs as valid only for the version returned with
them.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, Optional, TypeVar, Union

from .cache import CacheKind
from .errors import ConfError, NotFoundError, ValidationError
from .models import (
    Backend,
    BackendSwitchingRule,
    Entity,
    Frontend,
    Listener,
    Server,
    Site,
    TCPRule,
    VersionedResult,
)
from .parser import blank_entity, named_inflater, parse_object, parse_records, positional_inflater
from .scope import PARENT_TYPES, ROOT, Scope, resolve_parent_type, resolve_rule_type

if TYPE_CHECKING:
    from .client import ConfigurationClient

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)

Payload = Union[Entity, dict]


@dataclass(frozen=True)
class EntityKind(Generic[E]):
    """Static description of one entity type."""
    name: str
    model: type[E]
    engine_type: str
    parent_type: Optional[str] = None  # None for top-level entities
    positional: bool = False

    def inflater(self) -> Callable[[str, str], E]:
        if self.positional:
            return positional_inflater(self.model)
        return named_inflater(self.model)


SITE = EntityKind("site", Site, "site")
FRONTEND = EntityKind("frontend", Frontend, "service")
BACKEND = EntityKind("backend", Backend, "farm")
SERVER = EntityKind("server", Server, "server", parent_type="backend")
LISTENER = EntityKind("listener", Listener, "listen", parent_type="frontend")
BACKEND_SWITCHING_RULE = EntityKind(
    "backend_switching_rule", BackendSwitchingRule, "usefarm",
    parent_type="frontend", positional=True,
)
# Engine type depends on the rule type, see TCPContentRuleResource
TCP_CONTENT_RULE = EntityKind("tcp_content_rule", TCPRule, "", positional=True)


@dataclass(frozen=True)
class Address:
    """Where an entity collection lives, in cache and engine terms."""
    scope: Scope
    cache_kind: CacheKind
    command_prefix: str  # e.g. "l7-service-usefarm"
    parent_args: tuple[str, ...] = ()


class Resource(Generic[E]):
    """Shared get/list/create/edit/delete protocol."""

    def __init__(self, client: "ConfigurationClient", kind: EntityKind[E]):
        self.client = client
        self.kind = kind

    def _key(self, key: Any) -> Any:
        if not self.kind.positional:
            return str(key)
        try:
            return int(key)
        except (TypeError, ValueError):
            raise ValidationError(f"{self.kind.name} ID must be an integer, got {key!r}")

    # === Reads ===

    async def _list(self, address: Address, transaction_id: str) -> VersionedResult[list[E]]:
        cache = self.client.cache
        entry = cache.get(address.cache_kind, address.scope, transaction_id)
        if entry is not None:
            return VersionedResult(version=entry.version, data=entry.value)

        # Version is read before the dump, so a cached collection is never
        # stamped with a version newer than its content.
        version = self.client.get_version(transaction_id)
        response = await self.client.execute(
            f"{address.command_prefix}-dump", transaction_id, *address.parent_args
        )
        items = parse_records(response, self.kind.inflater())

        cache.set_all(address.cache_kind, address.scope, transaction_id, items, version)
        return VersionedResult(version=version, data=items)

    async def _get(self, address: Address, key: Any, transaction_id: str) -> VersionedResult[E]:
        cache = self.client.cache
        entry = cache.get_one(address.cache_kind, key, address.scope, transaction_id)
        if entry is not None:
            return VersionedResult(version=entry.version, data=entry.value)

        version = self.client.get_version(transaction_id)
        response = await self.client.execute(
            f"{address.command_prefix}-show", transaction_id, *address.parent_args, str(key)
        )
        if not response.strip():
            raise NotFoundError(f"{self.kind.name} {key} does not exist in {address.scope}")

        entity = parse_object(response, blank_entity(self.kind.model, **{self.kind.model.key_field: key}))
        cache.set(address.cache_kind, key, address.scope, transaction_id, entity, version)
        return VersionedResult(version=version, data=entity)

    # === Writes ===

    async def _create(
        self,
        address: Address,
        data: E,
        transaction_id: str,
        version: Optional[int],
    ) -> None:
        key = str(data.key)
        commands = [(f"{address.command_prefix}-create", (*address.parent_args, key))]
        for attribute, value in data.engine_attributes().items():
            commands.append((f"{address.command_prefix}-set", (*address.parent_args, key, attribute, value)))

        await self._write(
            "create", address, data.key, commands, transaction_id, version,
            after=data.model_dump(exclude_none=True),
        )

    async def _edit(
        self,
        address: Address,
        key: Any,
        data: E,
        transaction_id: str,
        version: Optional[int],
        ondisk: E,
    ) -> None:
        old = ondisk.engine_attributes()
        new = data.engine_attributes()
        args = (*address.parent_args, str(key))

        commands = []
        for attribute, value in new.items():
            if old.get(attribute) != value:
                commands.append((f"{address.command_prefix}-set", (*args, attribute, value)))
        for attribute in old:
            if attribute not in new:
                commands.append((f"{address.command_prefix}-unset", (*args, attribute)))

        if not commands:
            self.client.check_transaction_or_version(transaction_id, version)
            logger.info(f"{self.kind.name} {key} in {address.scope} unchanged, nothing to edit")
            return

        await self._write(
            "edit", address, key, commands, transaction_id, version,
            before=ondisk.model_dump(exclude_none=True),
            after=data.model_dump(exclude_none=True),
        )

    async def _delete(
        self,
        address: Address,
        key: Any,
        transaction_id: str,
        version: Optional[int],
    ) -> None:
        commands = [(f"{address.command_prefix}-delete", (*address.parent_args, str(key)))]
        await self._write("delete", address, key, commands, transaction_id, version)

    async def _write(
        self,
        operation: str,
        address: Address,
        key: Any,
        commands: list[tuple[str, tuple[str, ...]]],
        transaction_id: str,
        version: Optional[int],
        before: Optional[dict] = None,
        after: Optional[dict] = None,
    ) -> None:
        parent = None if address.scope.is_root else str(address.scope)
        try:
            async with self.client.writing(transaction_id, version) as tid:
                for command, args in commands:
                    await self.client.execute(command, tid, *args)
                self._invalidate(address, tid)
        except ConfError as e:
            self.client.tracker.log_change(
                operation, self.kind.name, success=False, key=key, parent=parent,
                transaction_id=transaction_id, version=version,
                before_state=before, after_state=after, error=str(e),
            )
            raise

        self.client.tracker.log_change(
            operation, self.kind.name, success=True, key=key, parent=parent,
            transaction_id=transaction_id, version=version,
            before_state=before, after_state=after,
        )
        logger.info(f"{operation} {self.kind.name} {key} in {address.scope}")

    def _invalidate(self, address: Address, transaction_id: str) -> None:
        """Drop cached views affected by a write to ``address``."""
        cache = self.client.cache
        if address.scope.is_root:
            # Top-level objects are aggregated by sites; drop everything
            cache.invalidate_transaction(transaction_id)
            return
        cache.invalidate_parent(transaction_id, address.scope)
        cache.invalidate_parent(transaction_id, ROOT)


class EntityResource(Resource[E]):
    """CRUD for entities with a fixed parent type (or none).

    Top-level entities (sites, frontends, backends) take no ``parent_name``.
    """

    def address(self, parent_name: Optional[str] = None) -> Address:
        kind = self.kind
        if kind.parent_type is None:
            return Address(
                scope=ROOT,
                cache_kind=CacheKind(kind.name),
                command_prefix=f"l7-{kind.engine_type}",
            )
        if not parent_name:
            raise ValidationError(f"{kind.name} requires a {kind.parent_type} name")
        parent_engine = resolve_parent_type(kind.parent_type)
        return Address(
            scope=Scope(kind.parent_type, parent_name),
            cache_kind=CacheKind(kind.name),
            command_prefix=f"l7-{parent_engine}-{kind.engine_type}",
            parent_args=(parent_name,),
        )

    async def list(
        self,
        parent_name: Optional[str] = None,
        transaction_id: str = "",
    ) -> VersionedResult[list[E]]:
        """Return every entity under the parent, with the configuration version."""
        return await self._list(self.address(parent_name), transaction_id)

    async def get(
        self,
        key: Any,
        parent_name: Optional[str] = None,
        transaction_id: str = "",
    ) -> VersionedResult[E]:
        """Return one entity, with the configuration version.

        Raises:
            NotFoundError: If the engine does not know the entity
        """
        return await self._get(self.address(parent_name), self._key(key), transaction_id)

    async def create(
        self,
        data: Payload,
        parent_name: Optional[str] = None,
        transaction_id: str = "",
        version: Optional[int] = None,
    ) -> None:
        """Create an entity. Exactly one of transaction_id or version is required."""
        entity = self.client.validate(self.kind.model, data)
        await self._create(self.address(parent_name), entity, transaction_id, version)

    async def edit(
        self,
        key: Any,
        data: Payload,
        parent_name: Optional[str] = None,
        transaction_id: str = "",
        version: Optional[int] = None,
    ) -> None:
        """Replace an entity's attributes. Exactly one of transaction_id or version is required."""
        key = self._key(key)
        entity = self.client.validate(self.kind.model, data, key=key)
        address = self.address(parent_name)
        ondisk = await self._get(address, key, transaction_id)
        await self._edit(address, key, entity, transaction_id, version, ondisk.data)

    async def delete(
        self,
        key: Any,
        parent_name: Optional[str] = None,
        transaction_id: str = "",
        version: Optional[int] = None,
    ) -> None:
        """Delete an entity. Exactly one of transaction_id or version is required."""
        await self._delete(self.address(parent_name), self._key(key), transaction_id, version)


class BackendSwitchingRuleResource(EntityResource[BackendSwitchingRule]):
    """Backend switching rules of a frontend, addressed by positional ID."""

    def __init__(self, client: "ConfigurationClient"):
        super().__init__(client, BACKEND_SWITCHING_RULE)

    def _invalidate(self, address: Address, transaction_id: str) -> None:
        self.client.cache.invalidate_frontend(transaction_id, address.scope.parent_name)


class TCPContentRuleResource(Resource[TCPRule]):
    """TCP content rules, with a request/response rule type axis.

    Response rules exist only under backends. Every operation resolves the
    parent and rule types first, so an illegal combination never reaches the
    cache or the engine.
    """

    def __init__(self, client: "ConfigurationClient"):
        super().__init__(client, TCP_CONTENT_RULE)

    def address(self, parent_type: str, parent_name: str, rule_type: str) -> Address:
        rule_engine = resolve_rule_type(rule_type, parent_type)
        if not parent_name:
            raise ValidationError(f"tcp content rule requires a {parent_type} name")
        return Address(
            scope=Scope(parent_type, parent_name),
            cache_kind=CacheKind(self.kind.name, rule_type),
            command_prefix=f"l7-{PARENT_TYPES[parent_type]}-{rule_engine}",
            parent_args=(parent_name,),
        )

    async def list(
        self,
        parent_type: str,
        parent_name: str,
        rule_type: str,
        transaction_id: str = "",
    ) -> VersionedResult[list[TCPRule]]:
        return await self._list(self.address(parent_type, parent_name, rule_type), transaction_id)

    async def get(
        self,
        id: int,
        parent_type: str,
        parent_name: str,
        rule_type: str,
        transaction_id: str = "",
    ) -> VersionedResult[TCPRule]:
        address = self.address(parent_type, parent_name, rule_type)
        return await self._get(address, self._key(id), transaction_id)

    async def create(
        self,
        parent_type: str,
        parent_name: str,
        rule_type: str,
        data: Payload,
        transaction_id: str = "",
        version: Optional[int] = None,
    ) -> None:
        entity = self.client.validate(TCPRule, data)
        address = self.address(parent_type, parent_name, rule_type)
        await self._create(address, entity, transaction_id, version)

    async def edit(
        self,
        id: int,
        parent_type: str,
        parent_name: str,
        rule_type: str,
        data: Payload,
        transaction_id: str = "",
        version: Optional[int] = None,
    ) -> None:
        id = self._key(id)
        entity = self.client.validate(TCPRule, data, key=id)
        address = self.address(parent_type, parent_name, rule_type)
        ondisk = await self._get(address, id, transaction_id)
        await self._edit(address, id, entity, transaction_id, version, ondisk.data)

    async def delete(
        self,
        id: int,
        parent_type: str,
        parent_name: str,
        rule_type: str,
        transaction_id: str = "",
        version: Optional[int] = None,
    ) -> None:
        address = self.address(parent_type, parent_name, rule_type)
        await self._delete(address, self._key(id), transaction_id, version)

    def _invalidate(self, address: Address, transaction_id: str) -> None:
        cache = self.client.cache
        if address.cache_kind.rule_type == "response":
            cache.invalidate_backend(transaction_id, address.scope.parent_name)
        else:
            cache.invalidate_parent(transaction_id, address.scope)
