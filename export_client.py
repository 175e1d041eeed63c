"""
Export adapter: one deliverable (PDF or ZIP) from one or many submissions.

The remote fill service is tried first. Any transport-level failure (service
unreachable, non-2xx status, empty or non-PDF/ZIP body) falls back to filling
locally with the same DocumentFiller the service runs. There is exactly one
fallback attempt and no retry of the remote call. Input problems
(ValidationError) are raised immediately and never fall back.
"""

from __future__ import annotations

import contextlib
import io
import ipaddress
import logging
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Sequence
from urllib.parse import urlsplit

import httpx

import settings
from consent_overlay import DocumentFiller
from errors import ExportError, FillError, TemplateFetchError, TransportError, ValidationError
from field_mapping import Mapping
from stores import MappingStore

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "submissions.zip"
FALLBACK_NAME = "submission"
PDF_MEDIA_TYPE = "application/pdf"
ZIP_MEDIA_TYPE = "application/zip"

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9_-]+")


@dataclass(frozen=True)
class ExportArtifact:
    filename: str
    media_type: str
    content: bytes


def sanitize_display_name(value: Any) -> str:
    """Replace each run of characters outside [A-Za-z0-9_-] with '_'."""
    if value is None:
        return FALLBACK_NAME
    return _UNSAFE_NAME.sub("_", str(value)) or FALLBACK_NAME


def deliverable_name(record: dict[str, Any], display_name_field: str | None = None) -> str:
    field = display_name_field or settings.DISPLAY_NAME_FIELD
    return f"{sanitize_display_name(record.get(field))}.pdf"


def unique_entry_names(records: Sequence[dict[str, Any]], display_name_field: str | None = None) -> list[str]:
    """Archive entry names; repeated names get _2, _3, ... so no entry is overwritten."""
    used: set[str] = set()
    names: list[str] = []
    for record in records:
        stem = deliverable_name(record, display_name_field)[: -len(".pdf")]
        candidate = f"{stem}.pdf"
        suffix = 2
        while candidate in used:
            candidate = f"{stem}_{suffix}.pdf"
            suffix += 1
        used.add(candidate)
        names.append(candidate)
    return names


def build_archive(entries: Sequence[tuple[str, bytes]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zipf:
        for name, content in entries:
            zipf.writestr(name, content)
    return buffer.getvalue()


def is_loopback_host(host: str) -> bool:
    host = host.lower().rstrip(".")
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_unspecified


def validate_template_url(url: str | None) -> str:
    """A template URL the remote fill service can actually reach."""
    if not url:
        raise ValidationError("templateUrl is required")
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValidationError(f"templateUrl must be an absolute http(s) URL, got '{url}'")
    if is_loopback_host(parts.hostname):
        raise ValidationError("templateUrl must be a public URL accessible from the fill service, not localhost")
    return url


async def fill_records(
    filler: DocumentFiller,
    template_bytes: bytes,
    mode: str,
    records: Sequence[dict[str, Any]],
    mapping: Mapping,
    display_name_field: str | None = None,
) -> bytes:
    """Fill one PDF ("single", first record) or a ZIP of PDFs ("bulk").

    Shared by the fill service and the local fallback. Records are filled
    strictly one after another.
    """
    if mode == "single":
        return await filler.fill(template_bytes, records[0], mapping)

    names = unique_entry_names(records, display_name_field)
    entries = []
    for name, record in zip(names, records):
        entries.append((name, await filler.fill(template_bytes, record, mapping)))
    return build_archive(entries)


def looks_like_pdf(content: bytes) -> bool:
    return b"%PDF-" in content[:1024]


def looks_like_zip(content: bytes) -> bool:
    return zipfile.is_zipfile(io.BytesIO(content))


class TemplateSource:
    """The fixed template, read from a local file or a URL and cached.

    `url` is also what gets sent to the remote fill service, so it has to be
    publicly reachable when a service is configured.
    """

    def __init__(
        self,
        path: Path | None = None,
        url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        if path is None and not url:
            raise ValidationError("No template location configured.")
        self.path = Path(path) if path is not None else None
        self.url = url or None
        self.http_client = http_client
        self.timeout = settings.HTTP_TIMEOUT if timeout is None else timeout
        self._cached: bytes | None = None

    async def read(self) -> bytes:
        if self._cached is None:
            self._cached = await self._load()
        return self._cached

    async def _load(self) -> bytes:
        if self.path is not None and self.path.is_file():
            try:
                return self.path.read_bytes()
            except OSError as exc:
                raise TemplateFetchError(f"Failed to read template {self.path}: {exc}") from exc
        if self.url:
            return await self._download(self.url)
        raise TemplateFetchError(f"Template file not found: {self.path}")

    async def _download(self, url: str) -> bytes:
        try:
            if self.http_client is not None:
                response = await self.http_client.get(url)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TemplateFetchError(f"Failed to fetch template {url}: {exc}") from exc
        return response.content


class ExportClient:
    def __init__(
        self,
        template: TemplateSource,
        mapping_store: MappingStore | None = None,
        mapping: Mapping | dict | None = None,
        fill_service_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        filler: DocumentFiller | None = None,
        service_token: str | None = None,
        display_name_field: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.template = template
        self.mapping_store = mapping_store
        self.mapping = Mapping.parse(mapping) if mapping is not None else None
        self.fill_service_url = fill_service_url or None
        self.http_client = http_client
        self.timeout = settings.HTTP_TIMEOUT if timeout is None else timeout
        self.filler = filler or DocumentFiller(http_client=http_client, timeout=self.timeout)
        self.service_token = settings.FILL_SERVICE_TOKEN if service_token is None else service_token
        self.display_name_field = display_name_field or settings.DISPLAY_NAME_FIELD

    async def single(self, record: dict[str, Any] | None) -> ExportArtifact:
        if record is None:
            raise ValidationError("No submission provided")
        content = await self._export("single", [record])
        return ExportArtifact(deliverable_name(record, self.display_name_field), PDF_MEDIA_TYPE, content)

    async def bulk(self, records: Sequence[dict[str, Any]] | None) -> ExportArtifact:
        records = list(records or [])
        if not records:
            raise ValidationError("No submissions provided")
        content = await self._export("bulk", records)
        return ExportArtifact(ARCHIVE_NAME, ZIP_MEDIA_TYPE, content)

    def load_mapping(self) -> Mapping:
        if self.mapping is not None:
            return self.mapping
        record = self.mapping_store.latest() if self.mapping_store is not None else None
        if record is None:
            raise ValidationError("No saved mapping found")
        return record.mapping

    async def _export(self, mode: str, records: list[dict[str, Any]]) -> bytes:
        mapping = self.load_mapping()

        if self.fill_service_url:
            template_url = validate_template_url(self.template.url)
            try:
                return await self.fill_remote(mode, records, mapping, template_url)
            except TransportError as exc:
                logger.warning("Fill service failed or unavailable, filling locally: %s", exc)

        try:
            content = await self.fill_local(mode, records, mapping)
        except FillError as exc:
            raise ExportError(f"PDF export failed: {exc}") from exc
        logger.info("Filled %d submission(s) locally (%s)", len(records), mode)
        return content

    @contextlib.asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http_client is not None:
            yield self.http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def fill_remote(
        self,
        mode: str,
        records: list[dict[str, Any]],
        mapping: Mapping,
        template_url: str,
    ) -> bytes:
        payload = {
            "mode": mode,
            "submissions": records,
            "mapping": mapping.to_payload(),
            "templateUrl": template_url,
        }
        headers = {"Accept": "application/octet-stream"}
        if self.service_token:
            headers["Authorization"] = f"Bearer {self.service_token}"

        async with self._client() as client:
            try:
                response = await client.post(self.fill_service_url, json=payload, headers=headers)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise TransportError(f"Fill service unreachable: {exc}") from exc

        if not response.is_success:
            raise TransportError(f"Fill service returned {response.status_code}: {response.text[:200]}")
        content = response.content
        if not content:
            raise TransportError("No binary returned from fill service")
        if mode == "single" and not looks_like_pdf(content):
            raise TransportError("Fill service response is not a PDF")
        if mode == "bulk" and not looks_like_zip(content):
            raise TransportError("Fill service response is not a ZIP archive")

        logger.info("Filled %d submission(s) remotely (%s)", len(records), mode)
        return content

    async def fill_local(self, mode: str, records: list[dict[str, Any]], mapping: Mapping) -> bytes:
        template_bytes = await self.template.read()
        return await fill_records(self.filler, template_bytes, mode, records, mapping, self.display_name_field)
