# certgen/delivery/api/certificates.py
from fastapi import APIRouter, Body, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from typing import Any, Dict
import secrets
import logging
import traceback

from certgen.config.settings import settings
from certgen.delivery.schemas.body import GenerateRequest, GenerateResponse, LayoutSaved, SpreadsheetPreview
from certgen.domain.binding import DataBindingPipeline
from certgen.domain.column_mapping import auto_map_columns, validate_mapping
from certgen.domain.errors import (
    CertificateError,
    DuplicateLayerIdError,
    ImageLoadError,
    InvalidDimensionsError,
    LayerNotFoundError,
    ReservedLayerError,
    StorageError,
    TemplateNotFoundError,
    UnresolvedVariableError,
    ValidationError,
)
from certgen.domain.layout import assert_valid_layout, dump_document, load_document, serialize_document
from certgen.infrastructure.spreadsheet.reader import read_spreadsheet

router = APIRouter()
security = HTTPBasic()
logger = logging.getLogger("uvicorn.error")

STATUS_BY_ERROR = (
    (TemplateNotFoundError, status.HTTP_404_NOT_FOUND),
    (LayerNotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateLayerIdError, status.HTTP_409_CONFLICT),
    (ReservedLayerError, status.HTTP_409_CONFLICT),
    (InvalidDimensionsError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnresolvedVariableError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ImageLoadError, status.HTTP_502_BAD_GATEWAY),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def verify_basic_auth(creds: HTTPBasicCredentials = Depends(security)) -> None:
    ok_user = secrets.compare_digest(creds.username, settings.BASIC_AUTH_USERNAME)
    ok_pass = secrets.compare_digest(creds.password, settings.BASIC_AUTH_PASSWORD)
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Basic"},
        )


def _http_error(e: CertificateError) -> HTTPException:
    code = next((s for cls, s in STATUS_BY_ERROR if isinstance(e, cls)), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=code, detail=e.to_dict())


def _service(request: Request):
    service = getattr(request.app.state, "certificate_service", None)
    if service is None:
        logger.error("Service not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is not ready. Please try again in a moment.",
        )
    return service


def _internal_error(where: str, e: Exception) -> HTTPException:
    logger.error(f"=== ENDPOINT ERROR in {where}: {e} ===\n{traceback.format_exc()}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Terjadi kesalahan internal pada server.",
    )


@router.get("/templates/{template_id}/layout", dependencies=[Depends(verify_basic_auth)])
async def get_layout(request: Request, template_id: str) -> Dict[str, Any]:
    service = _service(request)
    try:
        template = await service.repository.get_template(template_id)
        return dump_document(load_document(template.layout_config))
    except CertificateError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("get_layout", e)


@router.put("/templates/{template_id}/layout", response_model=LayoutSaved, dependencies=[Depends(verify_basic_auth)])
async def save_layout(request: Request, template_id: str, layout: Dict[str, Any] = Body(...)):
    service = _service(request)
    try:
        document = load_document(layout)
        assert_valid_layout(document)
        stored = serialize_document(document)
        await service.repository.save_layout(template_id, stored)
        logger.info(f"Layout untuk template {template_id} disimpan.")
        return LayoutSaved(template_id=template_id, last_saved_at=stored.get("lastSavedAt"), layout=stored)
    except CertificateError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("save_layout", e)


@router.post("/templates/{template_id}/spreadsheet", response_model=SpreadsheetPreview,
             dependencies=[Depends(verify_basic_auth)])
async def upload_spreadsheet(request: Request, template_id: str, file: UploadFile = File(...)):
    service = _service(request)
    try:
        template = await service.repository.get_template(template_id)
        pipeline = DataBindingPipeline(load_document(template.layout_config))
        content = await file.read()
        sheet = read_spreadsheet(content, file.filename or "")

        fields = pipeline.mappable_field_ids()
        mapping = auto_map_columns(sheet.columns, fields)
        problems = validate_mapping(mapping, [f for f in pipeline.required_field_ids() if f in fields], sheet.columns)
        return SpreadsheetPreview(
            filename=file.filename or "",
            columns=sheet.columns,
            row_count=sheet.row_count,
            rows=sheet.rows,
            column_mapping=mapping,
            unmapped_fields=[f for f in fields if f not in mapping],
            missing_required=problems["missing"],
        )
    except CertificateError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("upload_spreadsheet", e)
    finally:
        await file.close()


@router.post("/templates/{template_id}/generate", response_model=GenerateResponse,
             dependencies=[Depends(verify_basic_auth)])
async def generate(request: Request, template_id: str, body: GenerateRequest):
    logger.info(f"=== ENDPOINT START generate for template {template_id} ({body.mode}) ===")
    service = _service(request)
    try:
        result = await service.generate(template_id, body)
        logger.info(f"=== ENDPOINT SUCCESS generate {result.run_id}: "
                    f"{result.succeeded} berhasil, {result.failed} gagal ===")
        return result
    except CertificateError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("generate", e)
