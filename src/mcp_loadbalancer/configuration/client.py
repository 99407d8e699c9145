"""Configuration client: the entry point for reading and writing configuration.

Every write carries a concurrency token, exactly one of:

- ``transaction_id``: an in-progress transaction whose baseline version is
  still the current version. The write joins that transaction and becomes
  visible when it is committed.
- ``version``: the current configuration version. The write runs in an
  implicit transaction that is committed right away, bumping the version.

Reads without a transaction see committed configuration; reads inside a
transaction see its uncommitted writes.
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, Optional, Union

import pydantic

from ..utils.audit_log import ChangeTracker
from .cache import ConfigurationCache
from .errors import ConfError, ConflictError, ValidationError
from .models import Entity, Transaction
from .parser import blank_entity
from .resources import (
    BACKEND,
    FRONTEND,
    LISTENER,
    SERVER,
    SITE,
    BackendSwitchingRuleResource,
    EntityResource,
    TCPContentRuleResource,
)
from .transactions import TransactionStore

if TYPE_CHECKING:
    from ..config.settings import Settings
    from ..engine.base import EngineRunner

logger = logging.getLogger(__name__)


class ConfigurationClient:
    """Load balancer configuration client.

    Args:
        runner: Runner for engine commands
        transactions: Store for the global version and transaction records
        cache: Configuration cache; a disabled cache is used if omitted
        use_validation: Validate create/edit payloads against the models
        tracker: Audit trail for writes
    """

    def __init__(
        self,
        runner: "EngineRunner",
        transactions: TransactionStore,
        cache: Optional[ConfigurationCache] = None,
        use_validation: bool = True,
        tracker: Optional[ChangeTracker] = None,
    ):
        self.runner = runner
        self.transactions = transactions
        self.cache = cache if cache is not None else ConfigurationCache(enabled=False)
        self.use_validation = use_validation
        self.tracker = tracker or ChangeTracker()

        self.sites = EntityResource(self, SITE)
        self.frontends = EntityResource(self, FRONTEND)
        self.backends = EntityResource(self, BACKEND)
        self.servers = EntityResource(self, SERVER)
        self.listeners = EntityResource(self, LISTENER)
        self.backend_switching_rules = BackendSwitchingRuleResource(self)
        self.tcp_content_rules = TCPContentRuleResource(self)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ConfigurationClient":
        from ..engine import create_runner

        return cls(
            runner=create_runner(settings.engine),
            transactions=TransactionStore(Path(settings.state_dir)),
            cache=ConfigurationCache(enabled=settings.cache_enabled),
            use_validation=settings.use_validation,
        )

    async def close(self) -> None:
        await self.runner.close()

    async def execute(self, command: str, transaction_id: str = "", *args: str) -> str:
        """Run one engine command, inside ``transaction_id`` if given."""
        return await self.runner.run(command, transaction_id, *args)

    # === Versions and concurrency tokens ===

    def get_version(self, transaction_id: str = "") -> int:
        """Return the global version, or a transaction's baseline version.

        The result is recorded in the cache so entries stamped with an
        older version stop being served.
        """
        version = self.transactions.get_version(transaction_id)
        self.cache.set_version(transaction_id, version)
        return version

    def check_transaction_or_version(self, transaction_id: str, version: Optional[int]) -> None:
        """Validate a write's concurrency token.

        Raises:
            ValidationError: If neither or both are given, or the transaction
                is no longer in progress
            NotFoundError: If the transaction does not exist
            ConflictError: If the version (or the transaction's baseline) is
                not the current version
        """
        if not transaction_id and version is None:
            raise ValidationError("Version or transaction not specified")
        if transaction_id and version is not None:
            raise ValidationError("Both version and transaction specified, specify only one")

        current = self.transactions.get_version()
        if transaction_id:
            transaction = self.transactions.get(transaction_id)
            if transaction.status != "in_progress":
                raise ValidationError(
                    f"Transaction {transaction_id} is {transaction.status}, not in progress"
                )
            if transaction.version != current:
                raise ConflictError(
                    f"Transaction {transaction_id} started at version {transaction.version}, "
                    f"configuration is at version {current}"
                )
        elif version != current:
            raise ConflictError(
                f"Version in configuration file is {current}, given version is {version}"
            )

    @asynccontextmanager
    async def writing(self, transaction_id: str, version: Optional[int]) -> AsyncIterator[str]:
        """Scope a write, yielding the transaction ID to run it in.

        With a version, an implicit transaction is started and committed
        on exit, or aborted if the write raises.
        """
        self.check_transaction_or_version(transaction_id, version)
        if transaction_id:
            yield transaction_id
            return

        transaction = await self.start_transaction(version)
        try:
            yield transaction.id
        except BaseException:
            await self._abort_implicit(transaction.id)
            raise
        try:
            await self.commit_transaction(transaction.id)
        except ConfError:
            await self._abort_implicit(transaction.id)
            raise

    async def _abort_implicit(self, transaction_id: str) -> None:
        try:
            await self.delete_transaction(transaction_id)
        except ConfError as e:
            logger.error(f"Failed to abort implicit transaction {transaction_id}: {e}")

    def validate(self, model: type[Entity], data: Union[Entity, dict], key=None) -> Entity:
        """Turn a payload into a model instance, validating it if enabled.

        ``key`` fills in a missing key field and must match a present one.
        """
        if isinstance(data, Entity):
            if not isinstance(data, model):
                raise ValidationError(f"Expected {model.__name__}, got {type(data).__name__}")
            data = data.model_dump(exclude_none=True)
        elif not isinstance(data, dict):
            raise ValidationError(f"Expected an object for {model.__name__}")

        data = dict(data)
        if key is not None:
            given = data.setdefault(model.key_field, key)
            if str(given) != str(key):
                raise ValidationError(
                    f"{model.key_field} in data ({given}) does not match {model.key_field} in path ({key})"
                )

        if not self.use_validation:
            return blank_entity(model, **data)
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid {model.__name__}: {e}") from e

    # === Transactions ===

    async def start_transaction(self, version: int) -> Transaction:
        """Open a transaction against the current version.

        Raises:
            ConflictError: If ``version`` is outdated
        """
        transaction = self.transactions.create(version)
        try:
            await self.execute("transaction-start", "", transaction.id)
        except ConfError:
            self.transactions.delete(transaction.id)
            raise
        self.cache.set_version(transaction.id, version)
        return transaction

    async def commit_transaction(self, transaction_id: str) -> Transaction:
        """Commit a transaction and bump the global version.

        Raises:
            NotFoundError: If the transaction does not exist
            ValidationError: If it is not in progress
            ConflictError: If another commit happened since it started, or
                is still running
        """
        try:
            transaction = self.transactions.reserve_commit(transaction_id)
        except ConflictError:
            self.cache.discard_transaction(transaction_id)
            raise
        try:
            await self.execute("transaction-commit", "", transaction_id)
        except BaseException as e:
            self.transactions.abort_commit(transaction_id)
            self.cache.discard_transaction(transaction_id)
            self.tracker.log_change(
                "commit", "transaction", success=False, key=transaction_id,
                transaction_id=transaction_id, version=transaction.version,
                error=str(e) or type(e).__name__,
            )
            raise
        version = self.transactions.finish_commit(transaction_id)

        self.cache.discard_transaction(transaction_id)
        self.cache.invalidate_transaction("")
        self.cache.set_version("", version)
        self.tracker.log_change(
            "commit", "transaction", success=True, key=transaction_id,
            transaction_id=transaction_id, version=version,
        )
        logger.info(f"Committed transaction {transaction_id}, version is now {version}")
        return Transaction(id=transaction_id, version=version, status="success")

    async def delete_transaction(self, transaction_id: str) -> None:
        """Abort a transaction and drop everything cached for it.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        transaction = self.transactions.get(transaction_id)
        if self.transactions.is_committing(transaction_id):
            raise ValidationError(f"Transaction {transaction_id} is being committed")
        try:
            await self.execute("transaction-abort", "", transaction_id)
        finally:
            self.transactions.delete(transaction_id)
            self.cache.discard_transaction(transaction_id)
        self.tracker.log_change(
            "abort", "transaction", success=True, key=transaction_id,
            transaction_id=transaction_id, version=transaction.version,
        )
        logger.info(f"Aborted transaction {transaction_id}")

    def get_transaction(self, transaction_id: str) -> Transaction:
        return self.transactions.get(transaction_id)

    def get_transactions(self, status: Optional[str] = None) -> list[Transaction]:
        return self.transactions.list_transactions(status)
