"""Request payload schemas for the whereami backend endpoints."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, FiniteFloat, ValidationError

from .errors import ValidationFailure


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


NonBlankStr = Annotated[str, AfterValidator(_require_text)]


class GatewayModel(BaseModel):
    """Base model configuration: unknown keys are ignored."""

    model_config = ConfigDict(extra='ignore', populate_by_name=True)


class WaypointIdentity(GatewayModel):
    name: NonBlankStr
    lat: FiniteFloat
    lon: FiniteFloat


class AddWaypointPayload(WaypointIdentity):
    tags: Optional[List[str]] = None


class RenameWaypointPayload(GatewayModel):
    old_name: NonBlankStr = Field(alias='oldName')
    lat: FiniteFloat
    lon: FiniteFloat
    new_name: NonBlankStr = Field(alias='newName')


class TagMutationPayload(WaypointIdentity):
    tags: List[NonBlankStr] = Field(min_length=1)


class ClusterQuery(GatewayModel):
    zoom: int = Field(ge=0)
    grid: int = Field(gt=0)
    bookmarks_only: bool = False


class ImportPayload(GatewayModel):
    dir: NonBlankStr
    recursive: bool = True


class HistoryPayload(GatewayModel):
    query: NonBlankStr
    lat: Optional[FiniteFloat] = None
    lon: Optional[FiniteFloat] = None


def validate_payload(model_cls: type[GatewayModel], data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate ``data`` and return the wire body (aliases applied, ``None`` dropped)."""
    try:
        return model_cls.model_validate(data).model_dump(by_alias=True, exclude_none=True)
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in err['loc']) or 'payload'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ValidationFailure(
            f"invalid {model_cls.__name__}: " + "; ".join(problems),
            details={"errors": problems},
        ) from exc


__all__ = [
    'NonBlankStr',
    'GatewayModel',
    'WaypointIdentity',
    'AddWaypointPayload',
    'RenameWaypointPayload',
    'TagMutationPayload',
    'ClusterQuery',
    'ImportPayload',
    'HistoryPayload',
    'validate_payload',
]
