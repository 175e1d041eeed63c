import argparse
import json
from pathlib import Path

import fitz


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="List text spans (and image boxes) of a template or filled PDF using PyMuPDF."
    )
    parser.add_argument("--pdf", required=True, help="Path to a template or filled PDF.")
    parser.add_argument("--page", type=int, default=None, help="Zero-based page index (default: all pages).")
    parser.add_argument(
        "--contains",
        help="Filter spans containing this text (case-insensitive).",
    )
    parser.add_argument(
        "--min-len",
        type=int,
        default=1,
        help="Minimum text length to include.",
    )
    parser.add_argument(
        "--output-json",
        help="Optional JSON output path for extracted spans.",
    )
    return parser.parse_args()


def to_bottom_left_bbox(bbox: list[float], page_h: float) -> list[float]:
    x0, y0, x1, y1 = bbox
    return [x0, page_h - y1, x1, page_h - y0]


def to_bottom_left_point(x: float, y: float, page_h: float) -> list[float]:
    return [x, page_h - y]


def open_pdf(source: bytes | Path) -> fitz.Document:
    if isinstance(source, (bytes, bytearray)):
        return fitz.open(stream=bytes(source), filetype="pdf")
    return fitz.open(source)


def _page_indices(doc: fitz.Document, page_index: int | None) -> range:
    if page_index is None:
        return range(len(doc))
    if page_index < 0 or page_index >= len(doc):
        raise IndexError(f"Page {page_index} out of range. PDF has {len(doc)} page(s).")
    return range(page_index, page_index + 1)


def iter_spans(page: fitz.Page):
    data = page.get_text("dict")
    for block in data.get("blocks", []):
        if block.get("type") != 0:
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                yield span


def extract_text_spans(
    source: bytes | Path,
    page_index: int | None = None,
    contains: str | None = None,
    min_len: int = 1,
) -> list[dict]:
    """Text spans with PDF (bottom-left origin) coordinates.

    origin_bottom_left is the text baseline start, i.e. the point a
    drawString() call was given.
    """
    needle = contains.lower() if contains else None
    items: list[dict] = []
    with open_pdf(source) as doc:
        for index in _page_indices(doc, page_index):
            page = doc[index]
            page_h = float(page.rect.height)
            for span in iter_spans(page):
                text = (span.get("text") or "").strip()
                if len(text) < min_len:
                    continue
                if needle and needle not in text.lower():
                    continue
                origin = span.get("origin")
                items.append(
                    {
                        "page": index,
                        "text": text,
                        "font": span.get("font"),
                        "size": span.get("size"),
                        "bbox_bottom_left": to_bottom_left_bbox(list(span.get("bbox", [0, 0, 0, 0])), page_h),
                        "origin_bottom_left": (
                            to_bottom_left_point(origin[0], origin[1], page_h) if origin else None
                        ),
                    }
                )
    return items


def extract_image_boxes(source: bytes | Path, page_index: int | None = None) -> list[dict]:
    """Placed raster images with bottom-left bounding boxes."""
    boxes: list[dict] = []
    with open_pdf(source) as doc:
        for index in _page_indices(doc, page_index):
            page = doc[index]
            page_h = float(page.rect.height)
            for info in page.get_image_info():
                boxes.append(
                    {
                        "page": index,
                        "bbox_bottom_left": to_bottom_left_bbox(list(info["bbox"]), page_h),
                    }
                )
    return boxes


def main() -> None:
    args = parse_args()
    pdf_path = Path(args.pdf)

    items = extract_text_spans(pdf_path, page_index=args.page, contains=args.contains, min_len=args.min_len)
    images = extract_image_boxes(pdf_path, page_index=args.page)

    print(f"PDF: {pdf_path}")
    print(f"Matches: {len(items)}  Images: {len(images)}")
    for idx, item in enumerate(items, start=1):
        x, y = item["origin_bottom_left"] or item["bbox_bottom_left"][:2]
        print(
            f"{idx:03d} | p{item['page']} | '{item['text']}' | font={item['font']} size={item['size']:.1f} | "
            f"origin_bl=({x:.2f},{y:.2f})"
        )
    for idx, image in enumerate(images, start=1):
        bbox = image["bbox_bottom_left"]
        print(f"img{idx:02d} | p{image['page']} | bbox_bl=({bbox[0]:.2f},{bbox[1]:.2f},{bbox[2]:.2f},{bbox[3]:.2f})")

    if args.output_json:
        output_path = Path(args.output_json)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"pdf": str(pdf_path), "page": args.page, "items": items, "images": images}
        output_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"Wrote JSON: {output_path}")


if __name__ == "__main__":
    main()
