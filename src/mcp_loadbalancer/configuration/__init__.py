"""Transactional configuration layer over the load balancer engine.

Usage:
    from mcp_loadbalancer.configuration import ConfigurationClient

    client = ConfigurationClient.from_settings(Settings.load())
    result = await client.backends.list()
    await client.servers.create(
        {"name": "web1", "address": "10.0.0.11", "port": 8080},
        parent_name="be_web",
        version=result.version,
    )
"""

from .cache import CacheEntry, CacheKind, ConfigurationCache
from .client import ConfigurationClient
from .errors import ConfError, ConflictError, EngineError, NotFoundError, ValidationError
from .models import (
    Backend,
    BackendSwitchingRule,
    Entity,
    Frontend,
    Listener,
    Server,
    Site,
    TCPRule,
    Transaction,
    VersionedResult,
)
from .parser import parse_object, parse_positional_id, parse_records, split_header_line
from .scope import ROOT, Scope, resolve_parent_type, resolve_rule_type
from .transactions import TransactionStore

__all__ = [
    # Client
    "ConfigurationClient",
    "TransactionStore",
    # Cache
    "ConfigurationCache",
    "CacheKind",
    "CacheEntry",
    # Errors
    "ConfError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "EngineError",
    # Models
    "Entity",
    "Site",
    "Frontend",
    "Backend",
    "Server",
    "Listener",
    "BackendSwitchingRule",
    "TCPRule",
    "Transaction",
    "VersionedResult",
    # Parsing and scopes
    "parse_records",
    "parse_object",
    "parse_positional_id",
    "split_header_line",
    "Scope",
    "ROOT",
    "resolve_parent_type",
    "resolve_rule_type",
]
