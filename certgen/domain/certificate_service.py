# certgen/domain/certificate_service.py
import asyncio
import gc
import os
import threading
import time
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

import psutil
from PIL import Image

from certgen.config.logger import get_logger
from certgen.config.settings import settings
from certgen.delivery.schemas.body import (
    ErrorDetail,
    GenerateRequest,
    GenerateResponse,
    RecipientResult,
)
from certgen.domain.binding import MODE_EXCEL, DataBindingPipeline
from certgen.domain.column_mapping import validate_mapping
from certgen.domain.errors import CertificateError, ImageLoadError, ValidationError
from certgen.domain.layout import load_document
from certgen.domain.models import CALLER_DATE_FIELDS, SURFACE_SCORE, LayoutDocument
from certgen.infrastructure.cloudinary.upload_file import upload_pil_image
from certgen.infrastructure.database.repository import CertificateRepository, TemplateRecord
from certgen.infrastructure.render.exporter import RasterExporter
from certgen.infrastructure.render.image_loader import decode_image, load_many_bytes

logger = get_logger(__name__)

Uploader = Callable[..., str]
Recipient = Tuple[int, Optional[str], Optional[Dict[str, str]]]


def _memory_mb() -> Optional[float]:
    try:
        return psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024
    except psutil.Error:
        return None


class CertificateService:
    """
    Bulk generation: one recipient at a time, each fully rendered and uploaded
    before the next starts. A recipient that fails is recorded and skipped.
    """

    def __init__(
        self,
        repository: CertificateRepository,
        exporter: RasterExporter,
        cpu_executor: ThreadPoolExecutor,
        io_executor: ThreadPoolExecutor,
        uploader: Uploader = upload_pil_image,
    ):
        self.repository = repository
        self.exporter = exporter
        self.cpu_executor = cpu_executor
        self.io_executor = io_executor
        self.uploader = uploader
        self.render_lock = threading.Lock()

    # --- assets ---

    async def _load_templates(self, template: TemplateRecord, document: LayoutDocument) -> Dict[str, Image.Image]:
        sources = {"certificate": template.image_path}
        if document.is_dual:
            sources[SURFACE_SCORE] = template.score_image_path or template.image_path
        missing = [key for key, src in sources.items() if not src]
        if missing:
            raise ImageLoadError(f"Template tidak memiliki gambar untuk surface {', '.join(missing)}.")

        keys = list(sources)
        loaded = await load_many_bytes([sources[k] for k in keys])
        images = {}
        for key, data in zip(keys, loaded):
            if isinstance(data, ImageLoadError):
                for img in images.values():
                    img.close()
                raise data
            images[key] = decode_image(data)
        return images

    async def _load_photos(self, document: LayoutDocument) -> Dict[str, Dict[str, Image.Image]]:
        """Photo layers are shared by every recipient; a photo that fails to load is left out."""
        wanted = [(key, layer.id, layer.src) for key, s in document.surfaces().items() for layer in s.photo_layers]
        photos: Dict[str, Dict[str, Image.Image]] = {key: {} for key in document.surfaces()}
        if not wanted:
            return photos
        loaded = await load_many_bytes([src for _, _, src in wanted])
        for (key, layer_id, _), data in zip(wanted, loaded):
            if isinstance(data, ImageLoadError):
                logger.warning(f"Foto layer '{layer_id}' gagal dimuat, layer dilewati: {data.detail}")
                continue
            try:
                photos[key][layer_id] = decode_image(data)
            except ImageLoadError as e:
                logger.warning(f"Foto layer '{layer_id}' tidak bisa dibaca, layer dilewati: {e.detail}")
        return photos

    # --- recipients ---

    async def _collect_recipients(self, request: GenerateRequest, pipeline: DataBindingPipeline) -> List[Recipient]:
        if request.mode == MODE_EXCEL:
            problems = validate_mapping(
                request.column_mapping,
                [f for f in pipeline.required_field_ids()
                 if f not in CALLER_DATE_FIELDS and f not in request.manual_values],
                columns={c for row in request.rows for c in row},
            )
            if problems["unknown_columns"]:
                raise ValidationError(
                    f"Field dipetakan ke kolom yang tidak ada: {', '.join(problems['unknown_columns'])}.",
                    field=problems["unknown_columns"][0],
                )
            if problems["missing"]:
                raise ValidationError(
                    f"Field wajib belum dipetakan: {', '.join(problems['missing'])}.", field=problems["missing"][0]
                )
            return [(i, None, pipeline.bind_spreadsheet_row(row, request.column_mapping))
                    for i, row in enumerate(request.rows)]

        members = await self.repository.get_members(request.member_ids)
        recipients = []
        for i, member_id in enumerate(request.member_ids):
            fields = members.get(member_id)
            recipients.append((i, member_id, pipeline.bind_record(fields) if fields is not None else None))
        return recipients

    def _render(self, index: int, key: str, document: LayoutDocument, templates, photos, resolved):
        with self.render_lock:
            return self.exporter.render_surface(
                templates.get(key), document.surfaces()[key], resolved.texts[key], resolved.rich_texts.get(key),
                photos.get(key), fallback_size=(document.canvas.width, document.canvas.height),
                label=f"Penerima #{index + 1} [{key}]",
            )

    def _upload(self, image: Image.Image, public_id: str) -> str:
        return self.uploader(
            image,
            public_id=public_id,
            folder=settings.CERTIFICATE_FOLDER,
            fmt=settings.SAVE_FORMAT,
            quality=settings.JPEG_QUALITY,
        )

    async def _produce(self, run_id: str, index: int, document: LayoutDocument, templates, photos,
                       resolved) -> Tuple[Dict[str, str], bool]:
        """Every surface of one recipient; the recipient only succeeds if all of them do."""
        loop = asyncio.get_running_loop()
        urls: Dict[str, str] = {}
        degraded = False
        for key in document.surfaces():
            rendered = await loop.run_in_executor(
                self.cpu_executor, self._render, index, key, document, templates, photos, resolved
            )
            try:
                degraded = degraded or rendered.degraded
                urls[key] = await loop.run_in_executor(
                    self.io_executor, self._upload, rendered.image, f"{run_id}_{index + 1:04d}_{key}"
                )
            finally:
                rendered.close()
        return urls, degraded

    # --- batch ---

    async def generate(self, template_id: str, request: GenerateRequest,
                       cancel_event: Optional[threading.Event] = None) -> GenerateResponse:
        run_id = uuid.uuid4().hex[:12]
        logger.info(f"=== START GENERATE Run ID: {run_id} (template {template_id}, mode {request.mode}) ===")
        memory_mb = _memory_mb()
        if memory_mb is not None:
            logger.info(f"Memory usage at start: {memory_mb:.1f}MB for Run ID: {run_id}")
        started = time.perf_counter()

        template = await self.repository.get_template(template_id)
        document = load_document(template.layout_config)
        pipeline = DataBindingPipeline(
            document,
            date_format=request.date_format,
            issue_date=request.issue_date,
            expired_date=request.expired_date,
            manual_values=request.manual_values,
            auto_certificate_no=request.auto_certificate_no,
        )
        response = GenerateResponse(run_id=run_id, template_id=template_id)
        recipients = await self._collect_recipients(request, pipeline)

        # no template, no batch
        templates = await self._load_templates(template, document)
        photos: Dict[str, Dict[str, Image.Image]] = {}
        try:
            photos = await self._load_photos(document)
            logger.info(f"Aset dimuat: {len(templates)} template, {sum(len(p) for p in photos.values())} foto. "
                        f"{len(recipients)} penerima untuk Run ID: {run_id}")

            for index, member_id, values in recipients:
                if cancel_event is not None and cancel_event.is_set():
                    response.cancelled = True
                    logger.warning(f"Run ID {run_id} dibatalkan setelah {index} penerima.")
                    break

                result = RecipientResult(index=index, status="failed", member_id=member_id)
                try:
                    if values is None:
                        raise ValidationError(f"Member '{member_id}' tidak ditemukan.", field="member_id")
                    result.name = values.get("name") or None
                    resolved = pipeline.resolve(values, index)
                    result.name = resolved.values.get("name")
                    result.certificate_no = resolved.values.get("certificate_no")

                    urls, degraded = await self._produce(run_id, index, document, templates, photos, resolved)
                    await self.repository.save_certificate({
                        "template_id": template_id,
                        "member_id": member_id,
                        "certificate_no": result.certificate_no,
                        "name": result.name,
                        "issue_date": resolved.values.get("issue_date"),
                        "expired_date": resolved.values.get("expired_date") or None,
                        "certificate_url": urls.get("certificate"),
                        "score_url": urls.get(SURFACE_SCORE),
                        "field_values": resolved.values,
                    })
                    result.status = "succeeded"
                    result.certificate_url = urls.get("certificate")
                    result.score_url = urls.get(SURFACE_SCORE)
                    result.degraded = degraded
                    response.succeeded += 1
                    logger.info(f"Penerima #{index + 1} ({resolved.display_name}) selesai "
                                f"({index + 1}/{len(recipients)}) untuk Run ID: {run_id}")
                except CertificateError as e:
                    response.failed += 1
                    result.error = ErrorDetail(**e.to_dict())
                    logger.warning(f"Penerima #{index + 1} gagal untuk Run ID {run_id}: [{e.code}] {e.detail}")
                except Exception as e:
                    response.failed += 1
                    result.error = ErrorDetail(code="internal_error", detail=f"{type(e).__name__}: {e}")
                    logger.error(f"Penerima #{index + 1} gagal untuk Run ID {run_id}: {e}\n{traceback.format_exc()}")
                response.results.append(result)
        finally:
            for img in templates.values():
                img.close()
            for surface_photos in photos.values():
                for img in surface_photos.values():
                    img.close()
            del templates, photos
            gc.collect()

        memory_mb = _memory_mb()
        if memory_mb is not None:
            logger.info(f"Memory after generate: {memory_mb:.1f}MB for Run ID: {run_id}")
        logger.info(f"=== COMPLETED GENERATE Run ID: {run_id}: {response.succeeded} berhasil, "
                    f"{response.failed} gagal dalam {time.perf_counter() - started:.2f} detik ===")
        return response
