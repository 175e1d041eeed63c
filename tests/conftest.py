from __future__ import annotations

import io
import sys
from pathlib import Path
from typing import Callable, Mapping as TypingMapping

import httpx
import pytest
from PIL import Image
from reportlab.pdfgen import canvas

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

LETTER = (612.0, 792.0)
TEMPLATE_TITLE = "Code of Conduct"
TEMPLATE_URL = "https://assets.example.org/code_of_conduct.pdf"
SIGNATURE_URL = "https://assets.example.org/signatures/jane.png"


def build_template(pages: tuple[tuple[float, float], ...] = (LETTER,)) -> bytes:
    """A small template PDF; every page carries the title near the top."""
    packet = io.BytesIO()
    c = canvas.Canvas(packet, pagesize=pages[0])
    for index, page_size in enumerate(pages):
        c.setPageSize(page_size)
        c.setFont("Times-Roman", 10)
        c.drawString(36, page_size[1] - 30, f"{TEMPLATE_TITLE} p{index + 1}")
        c.showPage()
    c.save()
    return packet.getvalue()


def build_image(image_format: str, size: tuple[int, int] = (60, 24)) -> bytes:
    mode = "RGBA" if image_format == "PNG" else "RGB"
    color = (20, 40, 200, 255) if mode == "RGBA" else (20, 40, 200)
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def make_template() -> Callable[..., bytes]:
    return build_template


@pytest.fixture
def template_bytes() -> bytes:
    return build_template()


@pytest.fixture
def png_bytes() -> bytes:
    return build_image("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return build_image("JPEG")


@pytest.fixture
def asset_transport() -> Callable[[TypingMapping[str, bytes]], httpx.MockTransport]:
    """MockTransport serving fixed bodies by URL; unknown URLs are unreachable."""

    def factory(assets: TypingMapping[str, bytes]) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            body = assets.get(str(request.url))
            if body is None:
                raise httpx.ConnectError("host unreachable", request=request)
            return httpx.Response(200, content=body)

        return httpx.MockTransport(handler)

    return factory


def texts(spans: list[dict]) -> list[str]:
    return [span["text"] for span in spans if not span["text"].startswith(TEMPLATE_TITLE)]
