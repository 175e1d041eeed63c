"""
Mapping model: where each named record field lands on the template.

A mapping is produced by the visual mapping editor and saved as JSON:

    {
      "fields": [
        {"name": "full_name", "x": 50, "y": 100, "page": 0, "type": "text", "fontSize": 12},
        {"name": "signature_url", "x": 80, "y": 640, "type": "image", "w": 120, "h": 48}
      ],
      "uiW": 600,
      "uiH": 800
    }

x/y are pixels measured from the top-left corner of the editor's rendered
page; uiW/uiH is the size of that rendered page when the mapping was saved.
Field types are a tagged variant: text placements carry a font size, image
placements carry a box size.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from errors import MappingError

DEFAULT_FONT_SIZE = 12.0
DEFAULT_IMAGE_WIDTH = 120.0
DEFAULT_IMAGE_HEIGHT = 48.0
DEFAULT_MAPPING_NAME = "Default Mapping"


class _Placement(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    x: float = Field(0.0, ge=0)
    y: float = Field(0.0, ge=0)
    page: int = 0
    # Image placements that are not the reserved image field fall back to text.
    font_size: float = Field(DEFAULT_FONT_SIZE, gt=0, alias="fontSize")

    @field_validator("x", "y", "page", mode="before")
    @classmethod
    def _missing_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("font_size", mode="before")
    @classmethod
    def _default_font_size(cls, value: Any) -> Any:
        return value or DEFAULT_FONT_SIZE


class TextField(_Placement):
    type: Literal["text"] = "text"


class ImageField(_Placement):
    type: Literal["image"] = "image"
    w: float = Field(DEFAULT_IMAGE_WIDTH, gt=0)
    h: float = Field(DEFAULT_IMAGE_HEIGHT, gt=0)

    @field_validator("w", mode="before")
    @classmethod
    def _default_width(cls, value: Any) -> Any:
        return value or DEFAULT_IMAGE_WIDTH

    @field_validator("h", mode="before")
    @classmethod
    def _default_height(cls, value: Any) -> Any:
        return value or DEFAULT_IMAGE_HEIGHT


MappingField = Annotated[Union[TextField, ImageField], Field(discriminator="type")]


class Mapping(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    fields: tuple[MappingField, ...] = ()
    ui_w: float | None = Field(None, gt=0, alias="uiW")
    ui_h: float | None = Field(None, gt=0, alias="uiH")

    @model_validator(mode="before")
    @classmethod
    def _unwrap_stored_record(cls, data: Any) -> Any:
        # Stored rows look like {"name": ..., "mapping": {...}, "updated_at": ...}.
        if isinstance(data, dict) and "fields" not in data and isinstance(data.get("mapping"), dict):
            return data["mapping"]
        return data

    @field_validator("fields", mode="before")
    @classmethod
    def _normalize_field_types(cls, value: Any) -> Any:
        if value is None:
            return ()
        if not isinstance(value, (list, tuple)):
            return value
        normalized = []
        for item in value:
            if isinstance(item, dict):
                item = dict(item)
                item["type"] = "image" if item.get("type") == "image" else "text"
            normalized.append(item)
        return normalized

    @field_validator("ui_w", "ui_h", mode="before")
    @classmethod
    def _falsy_is_unset(cls, value: Any) -> Any:
        return value or None

    @classmethod
    def parse(cls, payload: Any) -> "Mapping":
        """Validate an editor/stored payload, raising MappingError on bad input."""
        if payload is None:
            raise MappingError("No mapping provided.")
        if isinstance(payload, Mapping):
            return payload
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as exc:
            raise MappingError(f"Invalid mapping: {exc}") from exc

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MappingRecord(BaseModel):
    """A named mapping as kept by the mapping store."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = DEFAULT_MAPPING_NAME
    mapping: Mapping = Field(default_factory=Mapping)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
