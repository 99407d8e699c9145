"""Audit logging for configuration changes.

Every create/edit/delete goes through ``ChangeTracker.log_change`` which
writes one JSON record per line to the ``lbcraft.audit`` logger:
- Timestamped entries for all config modifications
- Before/after state of the entity
- Transaction or version the write was made against
"""
import json
import logging
import os
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

audit_logger = logging.getLogger("lbcraft.audit")

DEFAULT_AUDIT_DIR = "~/.lbcraft"


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.lbcraft/

    Returns:
        Path of the audit log file
    """
    log_dir = os.path.expanduser(log_dir or DEFAULT_AUDIT_DIR)
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    audit_file = Path(log_dir) / "audit.log"

    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
    )
    # One JSON document per line
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)
    audit_logger.propagate = False
    return audit_file


@dataclass
class ChangeRecord:
    """Record of a configuration change."""
    timestamp: str
    operation: str  # create, edit, delete, commit, abort
    entity_type: str
    key: Optional[str]
    parent: Optional[str]
    transaction_id: str
    version: Optional[int]
    user: str
    success: bool
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=None)

    @classmethod
    def from_json(cls, json_str: str) -> "ChangeRecord":
        return cls(**json.loads(json_str))


class ChangeTracker:
    """Track and log configuration changes."""

    def __init__(self, user: str = "system"):
        self.user = user

    def log_change(
        self,
        operation: str,
        entity_type: str,
        success: bool,
        key: Optional[object] = None,
        parent: Optional[str] = None,
        transaction_id: str = "",
        version: Optional[int] = None,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
        error: Optional[str] = None,
    ) -> ChangeRecord:
        """Log a configuration change.

        Returns:
            The ChangeRecord that was logged
        """
        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            operation=operation,
            entity_type=entity_type,
            key=None if key is None else str(key),
            parent=parent,
            transaction_id=transaction_id,
            version=version,
            user=self.user,
            success=success,
            before_state=before_state,
            after_state=after_state,
            error=error,
        )
        audit_logger.info(record.to_json())
        return record


def get_recent_changes(
    log_file: Optional[str] = None,
    entity_type: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 100,
) -> list[ChangeRecord]:
    """Read recent changes from the audit log.

    Args:
        log_file: Path to audit log. Defaults to ~/.lbcraft/audit.log
        entity_type: Filter by entity type
        operation: Filter by operation
        limit: Maximum number of records to return

    Returns:
        List of ChangeRecords, most recent first
    """
    if log_file is None:
        log_file = os.path.expanduser(f"{DEFAULT_AUDIT_DIR}/audit.log")

    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = ChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if entity_type and record.entity_type != entity_type:
                continue
            if operation and record.operation != operation:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
