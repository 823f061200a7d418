# certgen/domain/errors.py
from typing import Optional


class CertificateError(Exception):
    """Base class for every layout / generation failure raised by the domain."""

    code = "certificate_error"

    def __init__(self, detail: str, *, field: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.field = field

    def to_dict(self) -> dict:
        payload = {"code": self.code, "detail": self.detail}
        if self.field:
            payload["field"] = self.field
        return payload


# --- editing-time ---

class InvalidDimensionsError(CertificateError, ValueError):
    code = "invalid_dimensions"


class DuplicateLayerIdError(CertificateError):
    code = "duplicate_layer_id"


class ReservedLayerError(CertificateError):
    code = "reserved_layer"


class LayerNotFoundError(CertificateError, KeyError):
    code = "layer_not_found"

    def __str__(self) -> str:
        return self.detail


# --- generation-time ---

class ValidationError(CertificateError):
    code = "validation_error"


class UnresolvedVariableError(CertificateError):
    code = "unresolved_variable"


class ImageLoadError(CertificateError):
    code = "image_load_error"


class FontLoadError(CertificateError):
    code = "font_load_error"


class RenderError(CertificateError):
    code = "render_error"


class StorageError(CertificateError):
    code = "storage_error"


class TemplateNotFoundError(CertificateError, LookupError):
    code = "template_not_found"

    def __str__(self) -> str:
        return self.detail
