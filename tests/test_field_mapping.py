"""Mapping model parsing and validation."""

from __future__ import annotations

import pytest

from errors import MappingError
from field_mapping import ImageField, Mapping, MappingRecord, TextField


def test_text_field_defaults() -> None:
    mapping = Mapping.parse({"fields": [{"name": "full_name"}]})

    field = mapping.fields[0]
    assert isinstance(field, TextField)
    assert (field.x, field.y, field.page, field.font_size) == (0.0, 0.0, 0, 12.0)
    assert mapping.ui_w is None and mapping.ui_h is None


def test_unknown_or_missing_type_is_text() -> None:
    mapping = Mapping.parse(
        {"fields": [{"name": "role", "type": "checkbox", "x": 5, "y": 6}, {"name": "gender", "type": None}]}
    )

    assert all(isinstance(field, TextField) for field in mapping.fields)


def test_image_field_gets_default_box() -> None:
    mapping = Mapping.parse(
        {"fields": [{"name": "signature_url", "type": "image", "x": 10, "y": 20, "w": 0, "h": None}]}
    )

    field = mapping.fields[0]
    assert isinstance(field, ImageField)
    assert (field.w, field.h) == (120.0, 48.0)
    assert field.font_size == 12.0


def test_image_field_keeps_font_size_for_text_fallback() -> None:
    mapping = Mapping.parse({"fields": [{"name": "photo_note", "type": "image", "fontSize": 9}]})

    assert mapping.fields[0].font_size == 9.0
    assert mapping.to_payload()["fields"][0]["fontSize"] == 9.0


def test_editor_output_with_nulls_and_zero_font_size() -> None:
    mapping = Mapping.parse(
        {
            "fields": [{"name": "organization", "x": 12.5, "y": 40, "page": None, "fontSize": 0}],
            "uiW": 0,
            "uiH": None,
        }
    )

    field = mapping.fields[0]
    assert field.page == 0
    assert field.font_size == 12.0
    assert mapping.ui_w is None and mapping.ui_h is None


def test_stored_record_wrapper_is_unwrapped() -> None:
    stored = {
        "name": "Default Mapping",
        "mapping": {"fields": [{"name": "full_name", "x": 50, "y": 100}], "uiW": 600, "uiH": 800},
        "updated_at": "2026-01-05T10:00:00+00:00",
    }

    mapping = Mapping.parse(stored)

    assert mapping.ui_w == 600 and mapping.ui_h == 800
    assert mapping.fields[0].name == "full_name"


def test_out_of_range_page_is_kept_for_render_time_clamping() -> None:
    mapping = Mapping.parse({"fields": [{"name": "full_name", "page": -1}, {"name": "role", "page": 99}]})

    assert [field.page for field in mapping.fields] == [-1, 99]


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {"fields": [{"name": "full_name", "x": -4, "y": 10}]},
        {"fields": [{"name": "full_name", "fontSize": -2}]},
        {"fields": [{"x": 1, "y": 1}]},
        {"fields": [], "uiW": -600},
        {"fields": "full_name"},
    ],
)
def test_invalid_mapping_raises_mapping_error(payload) -> None:
    with pytest.raises(MappingError):
        Mapping.parse(payload)


def test_payload_uses_editor_key_names() -> None:
    mapping = Mapping.parse(
        {
            "fields": [
                {"name": "full_name", "x": 50, "y": 100, "fontSize": 14},
                {"name": "signature_url", "type": "image", "x": 80, "y": 640},
            ],
            "uiW": 600,
            "uiH": 800,
        }
    )

    payload = mapping.to_payload()

    assert payload["uiW"] == 600 and payload["uiH"] == 800
    assert payload["fields"][0] == {"name": "full_name", "x": 50.0, "y": 100.0, "page": 0, "type": "text", "fontSize": 14.0}
    assert payload["fields"][1]["type"] == "image"
    assert Mapping.parse(payload) == mapping


def test_mapping_record_defaults() -> None:
    record = MappingRecord.model_validate({"mapping": {"fields": [{"name": "role"}]}})

    assert record.name == "Default Mapping"
    assert record.updated_at.tzinfo is not None
    assert record.mapping.fields[0].name == "role"
