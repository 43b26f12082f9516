from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from workdesk.domain.fields import EmptyUpdateError, require_writable_fields
from workdesk.domain.permissions import ResourceKind
from workdesk.services.resource_service import RESOURCE_SPECS


def required_columns(kind: ResourceKind) -> frozenset[str]:
    table = RESOURCE_SPECS[kind].model.__table__  # type: ignore[attr-defined]
    return frozenset(column.name for column in table.columns if not column.nullable)


def sanitize_update(kind: ResourceKind, body: dict[str, Any], model: type[BaseModel]) -> dict[str, Any]:
    """Drop non-writable keys, then type-check what is left against ``model``.

    Update models accept null for every field; null is refused here for columns
    the table declares NOT NULL.
    """
    try:
        sanitized = require_writable_fields(kind, body)
    except EmptyUpdateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    try:
        validated = model.model_validate(sanitized)
    except PydanticValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=jsonable_encoder(exc.errors(include_url=False, include_context=False)),
        ) from exc
    values = validated.model_dump(exclude_unset=True)
    required = required_columns(kind)
    nulls = [name for name in sorted(values) if values[name] is None and name in required]
    if nulls:
        raise HTTPException(
            status_code=422,
            detail=[{"type": "null_not_allowed", "loc": [name], "msg": "field cannot be null"} for name in nulls],
        )
    return values
