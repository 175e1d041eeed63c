import argparse
import asyncio
import base64
import binascii
import contextlib
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import httpx
from PIL import Image
from pypdf import PdfReader, PdfWriter
from reportlab.lib.colors import Color
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

import settings
from coordinate_transform import PageSize, Placement, place_image, place_text
from errors import EmptyTemplateError, FieldAssetError, FillError, TemplateParseError
from field_mapping import DEFAULT_FONT_SIZE, ImageField, Mapping, TextField

logger = logging.getLogger(__name__)

BASE_FONT = "Helvetica"
TEXT_COLOR = (0.0, 0.0, 0.0)
# Decode order for signature/photo bytes.
IMAGE_FORMATS = ("PNG", "JPEG")


@dataclass
class DrawOp:
    placement: Placement
    text: str | None = None
    font_size: float = DEFAULT_FONT_SIZE
    image: Image.Image | None = None


def open_template(template_bytes: bytes) -> PdfReader:
    """Parse template bytes, raising TemplateParseError / EmptyTemplateError."""
    if not template_bytes:
        raise TemplateParseError("Template is empty.")
    try:
        reader = PdfReader(io.BytesIO(template_bytes))
        page_count = len(reader.pages)
    except Exception as exc:
        raise TemplateParseError(f"Template is not a readable PDF: {exc}") from exc
    if page_count == 0:
        raise EmptyTemplateError("Template has no pages.")
    return reader


def get_page_sizes(reader: PdfReader) -> list[PageSize]:
    return [(float(page.mediabox.width), float(page.mediabox.height)) for page in reader.pages]


def format_text_value(value: Any) -> str | None:
    """Stringify a scalar record value; None, empty and non-scalars draw nothing."""
    if value is None or isinstance(value, (dict, list, tuple, set, bytes)):
        return None
    text = str(value)
    return text or None


def decode_data_url(data_url: str) -> bytes:
    header, _, payload = data_url.partition(",")
    if ";base64" in header:
        return base64.b64decode(payload, validate=True)
    return payload.encode("utf-8")


async def fetch_image_bytes(client: httpx.AsyncClient, field_name: str, url: str) -> bytes:
    if url.startswith("data:"):
        try:
            return decode_data_url(url)
        except (binascii.Error, ValueError) as exc:
            raise FieldAssetError(field_name, f"invalid data URL: {exc}") from exc
    try:
        response = await client.get(url)
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise FieldAssetError(field_name, f"failed to fetch {url}: {exc}") from exc
    return response.content


def decode_image(field_name: str, data: bytes) -> Image.Image:
    """Decode PNG first, then JPEG."""
    for image_format in IMAGE_FORMATS:
        try:
            image = Image.open(io.BytesIO(data), formats=[image_format])
            image.load()
            return image
        except Image.DecompressionBombError as exc:
            raise FieldAssetError(field_name, f"image too large: {exc}") from exc
        except (OSError, ValueError):
            continue
    raise FieldAssetError(field_name, f"image is not one of {', '.join(IMAGE_FORMATS)}")


def draw_text(c: canvas.Canvas, op: DrawOp) -> None:
    c.setFont(BASE_FONT, op.font_size)
    c.setFillColor(Color(*TEXT_COLOR))
    c.drawString(op.placement.x, op.placement.y, op.text)


def draw_image(c: canvas.Canvas, op: DrawOp) -> None:
    placement = op.placement
    c.drawImage(
        ImageReader(op.image),
        placement.x,
        placement.y,
        width=placement.width,
        height=placement.height,
        mask="auto",
    )


def draw_overlay(pages: Sequence[PageSize], operations: Sequence[DrawOp]) -> bytes:
    """Render every operation onto a single multi-page overlay document.

    Overlay page i has the size of template page i. One canvas for all pages
    keeps a single font resource for the whole document.
    """
    packet = io.BytesIO()
    c = canvas.Canvas(packet, pagesize=pages[0])

    for page_index, page_size in enumerate(pages):
        c.setPageSize(page_size)
        for op in operations:
            if op.placement.page_index != page_index:
                continue
            if op.image is not None:
                draw_image(c, op)
            else:
                draw_text(c, op)
        c.showPage()

    c.save()
    packet.seek(0)
    return packet.read()


def merge_overlay(reader: PdfReader, overlay_bytes: bytes, page_indices: set[int]) -> bytes:
    overlay_pages = PdfReader(io.BytesIO(overlay_bytes)).pages
    writer = PdfWriter(clone_from=reader)
    for page_index in sorted(page_indices):
        writer.pages[page_index].merge_page(overlay_pages[page_index])

    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


class DocumentFiller:
    """Fill a PDF template from one record and one mapping.

    The same instance is used by the HTTP fill service and by the export
    client's local fallback, so both paths produce the same placements.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        image_field: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.http_client = http_client
        self.image_field = image_field or settings.IMAGE_FIELD
        self.timeout = settings.HTTP_TIMEOUT if timeout is None else timeout

    @contextlib.asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http_client is not None:
            yield self.http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            yield client

    async def fill(self, template_bytes: bytes, record: dict[str, Any], mapping: Mapping | dict) -> bytes:
        reader = open_template(template_bytes)
        pages = get_page_sizes(reader)
        mapping = Mapping.parse(mapping)

        operations: list[DrawOp] = []
        async with self._client() as client:
            for field in mapping.fields:
                try:
                    op = await self.prepare_field(client, field, record, mapping, pages)
                except FieldAssetError as exc:
                    logger.warning("Skipping field: %s", exc)
                    continue
                if op is not None:
                    operations.append(op)

        overlay = draw_overlay(pages, operations)
        result = merge_overlay(reader, overlay, {op.placement.page_index for op in operations})
        logger.info("Filled template (%d of %d fields drawn)", len(operations), len(mapping.fields))
        return result

    async def prepare_field(
        self,
        client: httpx.AsyncClient,
        field: TextField | ImageField,
        record: dict[str, Any],
        mapping: Mapping,
        pages: Sequence[PageSize],
    ) -> DrawOp | None:
        value = record.get(field.name)

        if isinstance(field, ImageField) and field.name == self.image_field:
            if not isinstance(value, str) or not value:
                return None
            data = await fetch_image_bytes(client, field.name, value)
            image = decode_image(field.name, data)
            return DrawOp(placement=place_image(field, mapping, pages), image=image)

        # Image placements for any other field are drawn as text.
        text = format_text_value(value)
        if text is None:
            return None
        return DrawOp(
            placement=place_text(field, mapping, pages, field.font_size),
            text=text,
            font_size=field.font_size,
        )


async def fill_template_file(
    template_path: Path,
    record: dict[str, Any],
    mapping: Mapping | dict,
    filler: DocumentFiller | None = None,
) -> bytes:
    filler = filler or DocumentFiller()
    return await filler.fill(template_path.read_bytes(), record, mapping)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fill the consent-form PDF template from submission data using a saved field mapping."
    )
    parser.add_argument(
        "--template",
        default=str(settings.TEMPLATE_PATH),
        help="Path to the template PDF.",
    )
    parser.add_argument(
        "--mapping",
        help="Path to a mapping JSON file. Defaults to the most recently saved mapping in the store.",
    )
    parser.add_argument(
        "--data-json",
        help="Path to a JSON file with one submission (object) or several (array).",
    )
    parser.add_argument(
        "--output",
        required=True,
        help="Output PDF/ZIP path, or a directory when using --export.",
    )
    parser.add_argument(
        "--batch",
        action="store_true",
        help="Treat --data-json as a list and write a ZIP with one PDF per submission.",
    )
    parser.add_argument(
        "--export",
        choices=["single", "bulk"],
        help="Export stored submissions through the fill service, falling back to local filling.",
    )
    parser.add_argument("--ids", nargs="*", default=[], help="Submission ids for --export.")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Skip the remote fill service and fill locally.",
    )
    parser.add_argument("--mappings-dir", default=str(settings.MAPPINGS_DIR), help="Mapping store directory.")
    parser.add_argument(
        "--submissions-dir",
        default=str(settings.SUBMISSIONS_DIR),
        help="Submission store directory.",
    )
    return parser.parse_args()


def load_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


async def run(args: argparse.Namespace) -> Path:
    from export_client import ExportClient, TemplateSource
    from stores import MappingStore, SubmissionStore

    mapping = Mapping.parse(load_json(Path(args.mapping))) if args.mapping else None
    client = ExportClient(
        template=TemplateSource(path=Path(args.template), url=settings.TEMPLATE_URL or None),
        mapping_store=MappingStore(Path(args.mappings_dir)),
        mapping=mapping,
        fill_service_url=None if args.local else (settings.FILL_SERVICE_URL or None),
    )

    if args.export:
        store = SubmissionStore(Path(args.submissions_dir))
        records = store.get_many(args.ids) if args.ids else store.list_submissions()
        if args.export == "single":
            artifact = await client.single(records[0] if records else None)
        else:
            artifact = await client.bulk(records)
        output_dir = Path(args.output)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / artifact.filename
    else:
        if not args.data_json:
            raise ValueError("Provide --data-json or --export.")
        data = load_json(Path(args.data_json))
        if args.batch:
            records = data if isinstance(data, list) else [data]
            artifact = await client.bulk(records)
        else:
            record = data[0] if isinstance(data, list) and data else data
            artifact = await client.single(record)
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)

    output_path.write_bytes(artifact.content)
    return output_path


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
    args = parse_args()
    try:
        output_path = asyncio.run(run(args))
    except FillError as exc:
        raise SystemExit(f"PDF export failed: {exc}") from exc
    print(f"Wrote: {output_path}")


if __name__ == "__main__":
    main()
