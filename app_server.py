import logging
from typing import Any, AsyncIterator, Literal

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

import settings
from consent_overlay import DocumentFiller
from errors import MappingError, ValidationError
from export_client import (
    ARCHIVE_NAME,
    PDF_MEDIA_TYPE,
    ZIP_MEDIA_TYPE,
    TemplateSource,
    deliverable_name,
    fill_records,
    validate_template_url,
)
from field_mapping import Mapping
from stores import MappingStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Consent Form PDF Fill Service")

# ── CORS ──────────────────────────────────────────────────────────────────────
# The fill service is called straight from the admin console in the browser.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"


def cors_headers(request: Request) -> dict[str, str]:
    """CORS headers for hand-built responses, honouring settings.CORS_ORIGINS."""
    headers = {"Access-Control-Allow-Headers": CORS_ALLOW_HEADERS}
    if "*" in settings.CORS_ORIGINS:
        headers["Access-Control-Allow-Origin"] = "*"
        return headers
    headers["Vary"] = "Origin"
    origin = request.headers.get("origin")
    if origin in settings.CORS_ORIGINS:
        headers["Access-Control-Allow-Origin"] = origin
    return headers


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "message": "Request validation failed.",
            "detail": exc.errors(),
        },
    )


# ── DEPENDENCIES ──────────────────────────────────────────────────────────────
async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT, follow_redirects=True) as client:
        yield client


def get_filler(client: httpx.AsyncClient = Depends(get_http_client)) -> DocumentFiller:
    return DocumentFiller(http_client=client)


def get_mapping_store() -> MappingStore:
    return MappingStore(settings.MAPPINGS_DIR)


class ExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: Literal["single", "bulk"] = "single"
    submissions: list[dict[str, Any]] = Field(default_factory=list)
    mapping: Mapping = Field(default_factory=Mapping)
    template_url: str | None = Field(None, alias="templateUrl")

    @field_validator("mode", mode="before")
    @classmethod
    def _default_mode(cls, value: Any) -> Any:
        return value or "single"

    @field_validator("submissions", mode="before")
    @classmethod
    def _default_submissions(cls, value: Any) -> Any:
        return value or []

    @field_validator("mapping", mode="before")
    @classmethod
    def _default_mapping(cls, value: Any) -> Any:
        return value or {"fields": []}


def error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=cors_headers(request))


async def parse_export_request(request: Request) -> ExportRequest:
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type:
        raise ValidationError("Expected JSON body")
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Expected JSON body") from exc
    if not isinstance(body, dict):
        raise ValidationError("Expected a JSON object body")

    try:
        export = ExportRequest.model_validate(body)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid request: {exc}") from exc

    # Loopback template URLs do not resolve from where this service runs.
    validate_template_url(export.template_url)
    if not export.submissions:
        raise ValidationError("No submission provided")
    return export


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.options("/pdf-export")
def pdf_export_preflight(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok", headers=cors_headers(request))


@app.post("/pdf-export")
async def pdf_export(
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
    filler: DocumentFiller = Depends(get_filler),
) -> Response:
    try:
        export = await parse_export_request(request)
        template_bytes = await TemplateSource(url=export.template_url, http_client=client).read()
        content = await fill_records(filler, template_bytes, export.mode, export.submissions, export.mapping)
    except ValidationError as exc:
        return error_response(request, 400, str(exc))
    except Exception as exc:
        logger.error("PDF export failed: %s", exc, exc_info=True)
        return error_response(request, 500, str(exc) or "Internal error")

    if export.mode == "single":
        filename, media_type = deliverable_name(export.submissions[0]), PDF_MEDIA_TYPE
    else:
        filename, media_type = ARCHIVE_NAME, ZIP_MEDIA_TYPE
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"', **cors_headers(request)},
    )


# ── MAPPINGS ──────────────────────────────────────────────────────────────────
@app.get("/api/mappings")
def list_mappings(store: MappingStore = Depends(get_mapping_store)) -> dict[str, list[str]]:
    return {"mappings": store.list_names()}


@app.get("/api/mappings/latest")
def get_latest_mapping(store: MappingStore = Depends(get_mapping_store)) -> Any:
    record = store.latest()
    if record is None:
        raise HTTPException(status_code=404, detail="No mapping found.")
    return record.model_dump(mode="json", by_alias=True, exclude_none=True)


@app.get("/api/mappings/{name}")
def get_mapping(name: str, store: MappingStore = Depends(get_mapping_store)) -> Any:
    record = store.get(name)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Mapping not found: {name}")
    return record.model_dump(mode="json", by_alias=True, exclude_none=True)


@app.post("/api/mappings/{name}")
def save_mapping(
    name: str,
    payload: dict[str, Any],
    store: MappingStore = Depends(get_mapping_store),
) -> dict[str, str]:
    try:
        record = store.upsert(name, payload)
    except MappingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"message": f"Saved: {record.name}", "updated_at": record.updated_at.isoformat()}
