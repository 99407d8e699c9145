"""Entity models for load balancer configuration objects.

Entities are pydantic models so that create/edit payloads get schema
validation for free. Parsing engine dumps bypasses validation (see
``parser.parse_object``), since the engine is the source of truth for
what it already holds.
"""
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$"

Mode = Literal["http", "tcp"]
Condition = Literal["if", "unless"]


class Entity(BaseModel):
    """Base class for every configuration entity."""

    model_config = ConfigDict(extra="forbid")

    # Field holding the entity key: "name" for named entities, "id" for
    # entities addressed by their position in the engine dump.
    key_field: ClassVar[str] = "name"

    @property
    def key(self) -> Any:
        return getattr(self, self.key_field)

    @classmethod
    def field_for_attribute(cls, attribute: str) -> Optional[str]:
        """Map an engine attribute name (``cond-test``) to a model field."""
        name = attribute.lstrip(".").replace("-", "_")
        if name in cls.model_fields:
            return name
        return None

    @staticmethod
    def attribute_for_field(field_name: str) -> str:
        return field_name.replace("_", "-")

    def engine_attributes(self) -> dict[str, str]:
        """Return the non-key attributes as engine ``attribute -> value`` strings."""
        attrs = {}
        for field_name in type(self).model_fields:
            if field_name == self.key_field:
                continue
            value = getattr(self, field_name)
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            attrs[self.attribute_for_field(field_name)] = str(value)
        return attrs


class Site(Entity):
    """A site groups a listening service with its default backend."""

    name: str = Field(pattern=NAME_PATTERN)
    mode: Optional[Mode] = None
    listen_address: Optional[str] = None
    listen_port: Optional[int] = Field(default=None, ge=1, le=65535)
    default_backend: Optional[str] = Field(default=None, pattern=NAME_PATTERN)
    maxconn: Optional[int] = Field(default=None, ge=0)


class Frontend(Entity):
    name: str = Field(pattern=NAME_PATTERN)
    mode: Optional[Mode] = None
    maxconn: Optional[int] = Field(default=None, ge=0)
    default_backend: Optional[str] = Field(default=None, pattern=NAME_PATTERN)
    client_timeout: Optional[int] = Field(default=None, ge=0)
    log: Optional[bool] = None


class Backend(Entity):
    name: str = Field(pattern=NAME_PATTERN)
    mode: Optional[Mode] = None
    balance: Optional[Literal["roundrobin", "static-rr", "leastconn", "first", "source", "uri"]] = None
    connect_timeout: Optional[int] = Field(default=None, ge=0)
    server_timeout: Optional[int] = Field(default=None, ge=0)
    adv_check: Optional[Literal["httpchk", "ssl-hello-chk", "smtpchk", "mysql-check", "tcp-check"]] = None


class Server(Entity):
    name: str = Field(pattern=NAME_PATTERN)
    address: str = Field(min_length=1)
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    weight: Optional[int] = Field(default=None, ge=0, le=256)
    check: Optional[bool] = None
    backup: Optional[bool] = None
    maxconn: Optional[int] = Field(default=None, ge=0)


class Listener(Entity):
    name: str = Field(pattern=NAME_PATTERN)
    address: str = Field(min_length=1)
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    ssl: Optional[bool] = None
    ssl_certificate: Optional[str] = None


class BackendSwitchingRule(Entity):
    """Selects a backend for matching traffic in a frontend.

    ``id`` is the rule's position in the frontend and changes whenever rules
    are inserted or removed before it.
    """

    key_field: ClassVar[str] = "id"

    id: int = Field(ge=0)
    name: str = Field(pattern=NAME_PATTERN)
    cond: Optional[Condition] = None
    cond_test: Optional[str] = None


class TCPRule(Entity):
    """TCP content inspection rule (request or response side).

    ``id`` is positional, like ``BackendSwitchingRule.id``.
    """

    key_field: ClassVar[str] = "id"

    id: int = Field(ge=0)
    action: Literal["accept", "reject"]
    cond: Optional[Condition] = None
    cond_test: Optional[str] = None


class Transaction(BaseModel):
    id: str
    version: int
    status: Literal["in_progress", "failed", "success"] = "in_progress"


E = TypeVar("E")


@dataclass
class VersionedResult(Generic[E]):
    """Data returned together with the configuration version it belongs to."""
    version: int
    data: E

    def to_dict(self) -> dict:
        if isinstance(self.data, list):
            data: Any = [item.model_dump(exclude_none=True) for item in self.data]
        else:
            data = self.data.model_dump(exclude_none=True)
        return {"_version": self.version, "data": data}
