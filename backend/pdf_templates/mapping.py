"""
Field-mapping parsing, validation and JSON serialization.

Per-definition schema checks live on the ``FieldDefinition`` model; this module
turns pydantic errors into ``InvalidMapping`` and adds the checks that need the
whole mapping or the template (duplicate ids, page range).
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from .errors import InvalidMapping
from .models import FieldDefinition


def _describe(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"])
    return f"'{location}': {error['msg']}" if location else error["msg"]


def parse_definition(raw: Any, template_id: Optional[str] = None) -> FieldDefinition:
    """Build a ``FieldDefinition`` from one JSON object."""
    if isinstance(raw, FieldDefinition):
        return raw
    try:
        return FieldDefinition.model_validate(raw)
    except ValidationError as exc:
        definition_id = raw.get("id") if isinstance(raw, Mapping) else None
        raise InvalidMapping(
            f"Invalid field definition {_describe(exc)}",
            template_id=template_id,
            definition_id=definition_id if isinstance(definition_id, str) else None,
        ) from exc


def parse_mapping(raw_fields: Iterable[Any], template_id: Optional[str] = None) -> List[FieldDefinition]:
    if raw_fields is None:
        return []
    if isinstance(raw_fields, (str, bytes, Mapping)) or not isinstance(raw_fields, Iterable):
        raise InvalidMapping("Mapping must be a list of field definitions", template_id=template_id)
    return [parse_definition(item, template_id=template_id) for item in raw_fields]


def validate_mapping(
    definitions: Sequence[FieldDefinition],
    page_count: int,
    template_id: Optional[str] = None,
) -> None:
    """Raise ``InvalidMapping`` on the first definition that clashes with the mapping or template."""
    seen = set()
    for definition in definitions:
        if definition.id in seen:
            raise InvalidMapping(
                "Duplicate field identifier", template_id=template_id, definition_id=definition.id
            )
        seen.add(definition.id)

        if definition.page >= page_count:
            raise InvalidMapping(
                f"Page {definition.page} does not exist (template has {page_count} pages)",
                template_id=template_id,
                definition_id=definition.id,
            )


def definition_to_dict(definition: FieldDefinition) -> Dict[str, Any]:
    return definition.model_dump(mode="json", by_alias=True, exclude_none=True)


def mapping_to_list(definitions: Optional[Sequence[FieldDefinition]]) -> List[Dict[str, Any]]:
    return [definition_to_dict(d) for d in definitions or []]
