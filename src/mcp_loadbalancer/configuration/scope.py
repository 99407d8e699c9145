"""Translation of parent and rule types into engine vocabulary."""
from dataclasses import dataclass
from typing import Optional

from .errors import ValidationError

# Logical parent type -> engine object type
PARENT_TYPES = {
    "frontend": "service",
    "backend": "farm",
}

# Logical rule type -> engine TCP content rule type
RULE_TYPES = {
    "request": "tcpreqcont",
    "response": "tcprspcont",
}

FRONTEND_PARENTS = frozenset({"frontend"})
RESPONSE_RULES = frozenset({"response"})


@dataclass(frozen=True)
class Scope:
    """A (parent type, parent name) pair; the root scope has neither."""
    parent_type: Optional[str] = None
    parent_name: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.parent_type is None

    def __str__(self) -> str:
        if self.is_root:
            return "<root>"
        return f"{self.parent_type}/{self.parent_name}"


ROOT = Scope()


def resolve_parent_type(parent_type: str) -> str:
    """Return the engine token for a parent type.

    Raises:
        ValidationError: If the parent type is not recognized
    """
    engine_type = PARENT_TYPES.get(parent_type)
    if engine_type is None:
        raise ValidationError(f"Parent type {parent_type} not recognized")
    return engine_type


def resolve_rule_type(rule_type: str, parent_type: str) -> str:
    """Return the engine token for a TCP content rule type under a parent.

    Raises:
        ValidationError: If either type is not recognized, or a response
            rule is requested under a frontend
    """
    resolve_parent_type(parent_type)

    engine_type = RULE_TYPES.get(rule_type)
    if engine_type is None:
        raise ValidationError(f"Rule type {rule_type} not recognized")
    if rule_type in RESPONSE_RULES and parent_type in FRONTEND_PARENTS:
        raise ValidationError("Rule type cannot be response for frontend parent")
    return engine_type
