from __future__ import annotations

import pytest

from coordinate_transform import flip_y, place_image, place_text, resolve_page_index, scale_factors
from field_mapping import Mapping

LETTER = (612.0, 792.0)


def _mapping(fields, ui_w=None, ui_h=None) -> Mapping:
    return Mapping.parse({"fields": fields, "uiW": ui_w, "uiH": ui_h})


def test_identity_when_viewport_matches_page() -> None:
    mapping = _mapping([{"name": "full_name", "x": 100, "y": 200, "fontSize": 10}], 612, 792)

    placement = place_text(mapping.fields[0], mapping, [LETTER], 10)

    assert placement.x == pytest.approx(100.0)
    assert placement.y == pytest.approx(792 - 200 - 10)
    assert placement.height == 10


def test_missing_viewport_uses_page_size() -> None:
    assert scale_factors(612, 792, None, None) == (1.0, 1.0)


def test_worked_example_on_letter_page() -> None:
    mapping = _mapping([{"name": "full_name", "x": 50, "y": 100, "fontSize": 12}], 600, 800)

    placement = place_text(mapping.fields[0], mapping, [LETTER], 12)

    assert placement.page_index == 0
    assert placement.x == pytest.approx(51.0)
    assert placement.y == pytest.approx(681.0)


def test_quarter_scale_is_linear() -> None:
    half_page = (306.0, 396.0)
    mapping = _mapping(
        [{"name": "a", "x": 100, "y": 100}, {"name": "b", "x": 200, "y": 200}],
        ui_w=1224,
        ui_h=1584,
    )

    first = place_text(mapping.fields[0], mapping, [half_page], 12)
    second = place_text(mapping.fields[1], mapping, [half_page], 12)

    assert scale_factors(306, 396, 1224, 1584) == (0.25, 0.25)
    assert first.x == pytest.approx(25.0)
    assert second.x == pytest.approx(2 * first.x)
    assert first.y == pytest.approx(396 - 25 - 12)
    assert first.y - second.y == pytest.approx(25.0)


def test_image_box_is_scaled_and_flipped() -> None:
    mapping = _mapping(
        [{"name": "signature_url", "type": "image", "x": 80, "y": 640, "w": 120, "h": 48}],
        ui_w=600,
        ui_h=800,
    )

    placement = place_image(mapping.fields[0], mapping, [LETTER])

    assert placement.x == pytest.approx(80 * 1.02)
    assert placement.width == pytest.approx(120 * 1.02)
    assert placement.height == pytest.approx(48 * 0.99)
    assert placement.y == pytest.approx(792 - 640 * 0.99 - 48 * 0.99)


@pytest.mark.parametrize("page, expected", [(-1, 0), (99, 0), (None, 0), (0, 0), (2, 2)])
def test_page_index_clamps_to_first_page(page, expected) -> None:
    assert resolve_page_index(page, 3) == expected


def test_placement_uses_the_resolved_page_size() -> None:
    pages = [LETTER, (842.0, 595.0), (612.0, 1008.0)]
    mapping = _mapping([{"name": "note", "x": 10, "y": 10, "page": 2}, {"name": "note", "x": 10, "y": 10, "page": 7}])

    on_third = place_text(mapping.fields[0], mapping, pages, 12)
    clamped = place_text(mapping.fields[1], mapping, pages, 12)

    assert (on_third.page_index, on_third.y) == (2, pytest.approx(1008 - 10 - 12))
    assert (clamped.page_index, clamped.y) == (0, pytest.approx(792 - 10 - 12))


def test_flip_y_subtracts_drawn_height() -> None:
    assert flip_y(0, 0, 792, 1.0) == 792
    assert flip_y(100, 20, 792, 0.5) == 792 - 50 - 20
