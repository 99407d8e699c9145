"""Decoder for the engine's textual dumps.

A dump is a sequence of records separated by blank lines::

    1
      name bk_static
      cond if
      cond-test is_static

    2
      name bk_app

The first token of a record is its key: a positional ID for rules, a name
for named entities. The remaining lines are ``attribute value`` pairs; an
attribute without a value is a flag set to true.

Parsing never raises on malformed headers or values.
"""
import logging
from functools import lru_cache
from typing import Any, Callable, TypeVar, get_args

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .models import Entity

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)

RECORD_SEPARATOR = "\n\n"


def split_header_line(block: str) -> tuple[str, str]:
    """Split a record into its header token and the remaining lines."""
    block = block.lstrip("\n")
    header, _, rest = block.partition("\n")
    tokens = header.split()
    return (tokens[0] if tokens else ""), rest


def parse_positional_id(token: str) -> int:
    """Parse a record header as a positional ID.

    Headers that are not integers become ID 0, so a collection may hold
    several zero-ID entities.
    """
    try:
        return int(token)
    except ValueError:
        logger.warning(f"Record header {token!r} is not a positional ID, using 0")
        return 0


@lru_cache(maxsize=None)
def _field_adapter(model: type[Entity], field_name: str) -> TypeAdapter:
    return TypeAdapter(model.model_fields[field_name].annotation)


def _is_flag(model: type[Entity], field_name: str) -> bool:
    annotation = model.model_fields[field_name].annotation
    return annotation is bool or bool in get_args(annotation)


def _coerce(model: type[Entity], field_name: str, raw: str) -> Any:
    return _field_adapter(model, field_name).validate_python(raw)


def parse_object(block: str, entity: E) -> E:
    """Set the entity's fields from the attribute lines of a record.

    The header line is skipped. Unknown attributes and values that cannot be
    coerced to the field's type are ignored.
    """
    model = type(entity)
    _, body = split_header_line(block)

    for line in body.split("\n"):
        line = line.strip()
        if not line:
            continue
        attribute, _, raw = line.partition(" ")
        raw = raw.strip()
        field_name = model.field_for_attribute(attribute)
        if field_name is None or field_name == entity.key_field:
            continue

        if not raw:
            if not _is_flag(model, field_name):
                continue
            raw = "true"

        try:
            value = _coerce(model, field_name, raw)
        except PydanticValidationError:
            logger.debug(f"Ignoring {model.__name__}.{field_name} value {raw!r}")
            continue
        setattr(entity, field_name, value)

    return entity


def parse_records(response: str, inflate: Callable[[str, str], E]) -> list[E]:
    """Decode a dump into entities, in the order the records appear.

    Args:
        response: Raw engine output
        inflate: Entity-specific routine building an entity from
            ``(header_token, record_text)``

    Returns:
        List of entities; empty if the dump holds only whitespace
    """
    response = response.replace("\r\n", "\n")
    entities = []
    for block in response.split(RECORD_SEPARATOR):
        if not block.strip():
            continue
        header, _ = split_header_line(block)
        entities.append(inflate(header, block))
    return entities


def blank_entity(model: type[E], **known: Any) -> E:
    """Build an unvalidated entity with every unknown field set to None."""
    values: dict[str, Any] = dict.fromkeys(model.model_fields)
    values.update(known)
    return model.model_construct(**values)


def positional_inflater(model: type[E]) -> Callable[[str, str], E]:
    """Build an inflate routine for entities keyed by positional ID."""
    def inflate(header: str, block: str) -> E:
        entity = blank_entity(model, id=parse_positional_id(header))
        return parse_object(block, entity)
    return inflate


def named_inflater(model: type[E]) -> Callable[[str, str], E]:
    """Build an inflate routine for entities keyed by name."""
    def inflate(header: str, block: str) -> E:
        return parse_object(block, blank_entity(model, name=header))
    return inflate
