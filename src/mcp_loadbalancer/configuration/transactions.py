"""Version and transaction bookkeeping.

Layout under the state directory:
    state_dir/
    ├── version.yaml            # {version: N}, the committed version
    └── transactions/
        └── <id>.yaml           # {id, version, status}
"""
import logging
import threading
import uuid
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConflictError, NotFoundError, ValidationError
from .models import Transaction

logger = logging.getLogger(__name__)

INITIAL_VERSION = 1


class TransactionStore:
    """Persist the global configuration version and open transactions."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self._lock = threading.RLock()
        # Transactions between reserve_commit and finish_commit or abort_commit
        self._committing: set[str] = set()
        self.transactions_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Transaction store initialized at {self.state_dir}")

    @property
    def version_file(self) -> Path:
        return self.state_dir / "version.yaml"

    @property
    def transactions_dir(self) -> Path:
        return self.state_dir / "transactions"

    # === Versions ===

    def get_version(self, transaction_id: str = "") -> int:
        """Current global version, or the baseline of a transaction.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        if transaction_id:
            return self.get(transaction_id).version
        with self._lock:
            if not self.version_file.exists():
                return INITIAL_VERSION
            data = yaml.safe_load(self.version_file.read_text()) or {}
            return int(data.get("version", INITIAL_VERSION))

    def increment_version(self) -> int:
        """Bump the global version and return the new value."""
        with self._lock:
            version = self.get_version() + 1
            self.version_file.write_text(yaml.safe_dump({"version": version}))
            logger.info(f"Configuration version is now {version}")
            return version

    # === Transactions ===

    def create(self, version: int) -> Transaction:
        """Open a transaction against ``version``.

        Raises:
            ConflictError: If ``version`` is not the current global version
        """
        with self._lock:
            current = self.get_version()
            if version != current:
                raise ConflictError(
                    f"Version in configuration file is {current}, given version is {version}"
                )
            transaction = Transaction(id=str(uuid.uuid4()), version=version)
            self._write(transaction)
        logger.info(f"Started transaction {transaction.id} at version {version}")
        return transaction

    def get(self, transaction_id: str) -> Transaction:
        """Get a transaction by ID.

        Raises:
            NotFoundError: If it does not exist
        """
        path = self._path(transaction_id)
        with self._lock:
            if not path.exists():
                raise NotFoundError(f"Transaction {transaction_id} does not exist")
            data = yaml.safe_load(path.read_text()) or {}
        return Transaction(**data)

    def list_transactions(self, status: Optional[str] = None) -> list[Transaction]:
        """List transactions, optionally filtered by status."""
        with self._lock:
            paths = sorted(self.transactions_dir.glob("*.yaml"))
            transactions = [
                Transaction(**(yaml.safe_load(p.read_text()) or {})) for p in paths
            ]
        if status:
            transactions = [t for t in transactions if t.status == status]
        return transactions

    def set_status(self, transaction_id: str, status: str) -> Transaction:
        with self._lock:
            transaction = self.get(transaction_id)
            transaction.status = status
            self._write(transaction)
        return transaction

    def delete(self, transaction_id: str) -> None:
        with self._lock:
            if transaction_id in self._committing:
                raise ValidationError(f"Transaction {transaction_id} is being committed")
            path = self._path(transaction_id)
            if not path.exists():
                raise NotFoundError(f"Transaction {transaction_id} does not exist")
            path.unlink()

    # === Commits ===

    def reserve_commit(self, transaction_id: str) -> Transaction:
        """Claim the right to commit a transaction.

        One commit runs at a time, and only a transaction opened at the
        current global version may commit. A transaction that lost the race
        is marked failed; one turned away because another commit is still
        running stays in progress.

        Raises:
            NotFoundError: If the transaction does not exist
            ValidationError: If it is not in progress
            ConflictError: If its baseline is outdated or another commit runs
        """
        with self._lock:
            transaction = self.get(transaction_id)
            if transaction_id in self._committing:
                raise ValidationError(f"Transaction {transaction_id} is being committed")
            if transaction.status != "in_progress":
                raise ValidationError(
                    f"Transaction {transaction_id} is {transaction.status}, not in progress"
                )
            if self._committing:
                raise ConflictError(
                    f"Transaction {next(iter(self._committing))} is being committed, "
                    f"retry {transaction_id} once it finishes"
                )
            current = self.get_version()
            if transaction.version != current:
                self.set_status(transaction_id, "failed")
                raise ConflictError(
                    f"Transaction {transaction_id} started at version {transaction.version}, "
                    f"configuration is at version {current}"
                )
            self._committing.add(transaction_id)
        return transaction

    def finish_commit(self, transaction_id: str) -> int:
        """Bump the version for a reserved commit, drop the transaction, return the version."""
        with self._lock:
            self._committing.discard(transaction_id)
            version = self.increment_version()
            self.delete(transaction_id)
        return version

    def abort_commit(self, transaction_id: str) -> None:
        """Release a reserved commit the engine did not complete."""
        with self._lock:
            self._committing.discard(transaction_id)
            self.set_status(transaction_id, "failed")

    def is_committing(self, transaction_id: str) -> bool:
        with self._lock:
            return transaction_id in self._committing

    def _path(self, transaction_id: str) -> Path:
        # IDs are generated here; reject anything that could escape the directory
        if not transaction_id or "/" in transaction_id or transaction_id.startswith("."):
            raise NotFoundError(f"Transaction {transaction_id} does not exist")
        return self.transactions_dir / f"{transaction_id}.yaml"

    def _write(self, transaction: Transaction) -> None:
        self._path(transaction.id).write_text(
            yaml.safe_dump(transaction.model_dump(), sort_keys=False)
        )
