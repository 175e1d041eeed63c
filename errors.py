"""
Error taxonomy for the field-filling engine.

Everything raised on purpose derives from FillError so callers (the HTTP
service, the CLI, the export client) can tell engine failures apart from
programming errors.

    FillError
    ├── TemplateParseError    template bytes are not a readable PDF
    ├── EmptyTemplateError    template parsed but has no pages
    ├── TemplateFetchError    template could not be downloaded / read
    ├── FieldAssetError       one image field could not be fetched or decoded
    ├── TransportError        remote fill path failed; triggers local fallback
    ├── ValidationError       bad input; fatal, never retried
    │   └── MappingError      mapping payload failed model validation
    └── ExportError           remote and local paths both failed
"""

from __future__ import annotations


class FillError(RuntimeError):
    """Base class for engine errors."""


class TemplateParseError(FillError):
    pass


class EmptyTemplateError(FillError):
    pass


class TemplateFetchError(FillError):
    pass


class FieldAssetError(FillError):
    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(f"Field '{field_name}': {message}")
        self.field_name = field_name


class TransportError(FillError):
    pass


class ValidationError(FillError):
    pass


class MappingError(ValidationError):
    pass


class ExportError(FillError):
    pass
