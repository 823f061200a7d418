import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from PIL import Image

from certgen.delivery.schemas.body import GenerateRequest
from certgen.domain.certificate_service import CertificateService
from certgen.domain.errors import ImageLoadError, TemplateNotFoundError, ValidationError
from certgen.domain.layout import LayoutEditor, dump_document
from certgen.infrastructure.database.repository import TemplateRecord
from certgen.infrastructure.render.exporter import RenderedSurface


class FakeRepository:
    def __init__(self, template, members=None):
        self.template = template
        self.members = members or {}
        self.saved = []

    async def get_template(self, template_id):
        if template_id != self.template.id:
            raise TemplateNotFoundError(f"Template '{template_id}' tidak ditemukan.", field="template_id")
        return self.template

    async def get_members(self, member_ids):
        return {i: self.members[i] for i in member_ids if i in self.members}

    async def save_certificate(self, record):
        self.saved.append(record)
        return f"cert-{len(self.saved)}"


class FakeExporter:
    def __init__(self, degraded=False):
        self.degraded = degraded
        self.calls = []

    def render_surface(self, template, surface, texts, rich_texts=None, photos=None, fallback_size=None, label=""):
        self.calls.append((label, dict(texts)))
        return RenderedSurface(Image.new("RGB", template.size, (255, 255, 255)), degraded=self.degraded)


class FakeUploader:
    def __init__(self):
        self.public_ids = []

    def __call__(self, img, public_id, **kwargs):
        self.public_ids.append(public_id)
        return f"https://cdn.example.com/{public_id}.jpg"


@pytest.fixture()
def template_file(tmp_path):
    path = tmp_path / "template.png"
    Image.new("RGB", (300, 424), (255, 255, 255)).save(path)
    return str(path)


def _template(image_path, dual=False):
    editor = LayoutEditor()
    editor.on_image_ready("certificate", 300, 424)
    if dual:
        editor.on_image_ready("score", 300, 424)
    return TemplateRecord(
        id="tpl-1", name="Seminar", image_path=image_path, score_image_path=None,
        is_dual_template=dual, layout_config=dump_document(editor.document),
    )


@pytest.fixture()
def executors():
    cpu, io = ThreadPoolExecutor(max_workers=1), ThreadPoolExecutor(max_workers=1)
    yield cpu, io
    cpu.shutdown(wait=True)
    io.shutdown(wait=True)


def _service(repository, executors, exporter=None, uploader=None):
    cpu, io = executors
    return CertificateService(repository, exporter or FakeExporter(), cpu, io, uploader=uploader or FakeUploader())


def _rows():
    return [
        {"Nama": "Ana", "No": "C-1"},
        {"Nama": "Budi", "No": "C-2"},
        {"Nama": "", "No": "C-3"},
        {"Nama": "Cici", "No": "C-4"},
        {"Nama": "Dedi", "No": "C-5"},
    ]


def _excel_request(**fields):
    return GenerateRequest(
        mode="excel", rows=_rows(), column_mapping={"name": "Nama", "certificate_no": "No"},
        issue_date="2025-10-30", **fields,
    )


def test_one_bad_row_does_not_stop_the_batch(template_file, executors):
    repository = FakeRepository(_template(template_file))
    uploader = FakeUploader()
    service = _service(repository, executors, uploader=uploader)

    response = asyncio.run(service.generate("tpl-1", _excel_request()))

    assert (response.succeeded, response.failed) == (4, 1)
    failed = response.results[2]
    assert failed.status == "failed"
    assert failed.error.code == "validation_error"
    assert failed.error.field == "name"

    urls = [r.certificate_url for r in response.results if r.status == "succeeded"]
    assert len(set(urls)) == 4
    assert len(repository.saved) == 4
    assert repository.saved[0]["issue_date"] == "30 Oktober 2025"
    assert [r.name for r in response.results] == ["Ana", "Budi", None, "Cici", "Dedi"]


def test_texts_reach_the_renderer(template_file, executors):
    exporter = FakeExporter()
    service = _service(FakeRepository(_template(template_file)), executors, exporter=exporter)

    asyncio.run(service.generate("tpl-1", _excel_request()))

    label, texts = exporter.calls[0]
    assert texts["name"] == "Ana"
    assert texts["certificate_no"] == "C-1"
    assert "[certificate]" in label


def test_dual_template_uploads_both_surfaces(template_file, executors):
    uploader = FakeUploader()
    service = _service(FakeRepository(_template(template_file, dual=True)), executors, uploader=uploader)

    response = asyncio.run(service.generate("tpl-1", _excel_request()))

    first = response.results[0]
    assert first.certificate_url.endswith("_certificate.jpg")
    assert first.score_url.endswith("_score.jpg")
    assert len(uploader.public_ids) == 8


def test_degraded_renders_are_flagged(template_file, executors):
    service = _service(FakeRepository(_template(template_file)), executors, exporter=FakeExporter(degraded=True))
    response = asyncio.run(service.generate("tpl-1", _excel_request()))

    assert response.results[0].degraded is True


def test_member_mode(template_file, executors):
    members = {"m-1": {"name": "Ana", "certificate_no": "A-1"}}
    service = _service(FakeRepository(_template(template_file), members), executors)
    request = GenerateRequest(mode="member", member_ids=["m-1", "m-404"], issue_date="2025-10-30")

    response = asyncio.run(service.generate("tpl-1", request))

    assert (response.succeeded, response.failed) == (1, 1)
    assert response.results[0].member_id == "m-1"
    assert response.results[1].error.field == "member_id"


def test_auto_certificate_numbers(template_file, executors):
    members = {"m-1": {"name": "Ana"}, "m-2": {"name": "Budi"}}
    service = _service(FakeRepository(_template(template_file), members), executors)
    request = GenerateRequest(mode="member", member_ids=["m-1", "m-2"], issue_date="2025-10-30",
                              auto_certificate_no=True)

    response = asyncio.run(service.generate("tpl-1", request))

    assert [r.certificate_no for r in response.results] == ["251030001", "251030002"]


def test_cancel_stops_before_next_recipient(template_file, executors):
    service = _service(FakeRepository(_template(template_file)), executors)
    cancel = threading.Event()
    cancel.set()

    response = asyncio.run(service.generate("tpl-1", _excel_request(), cancel_event=cancel))

    assert response.cancelled
    assert response.results == []


def test_unmapped_required_field_fails_the_whole_batch(template_file, executors):
    service = _service(FakeRepository(_template(template_file)), executors)
    request = GenerateRequest(mode="excel", rows=_rows(), column_mapping={"name": "Nama"}, issue_date="2025-10-30")

    with pytest.raises(ValidationError) as exc:
        asyncio.run(service.generate("tpl-1", request))
    assert exc.value.field == "certificate_no"


def test_template_image_failure_is_fatal(executors, tmp_path):
    service = _service(FakeRepository(_template(str(tmp_path / "missing.png"))), executors)

    with pytest.raises(ImageLoadError):
        asyncio.run(service.generate("tpl-1", _excel_request()))


def test_unknown_template(template_file, executors):
    service = _service(FakeRepository(_template(template_file)), executors)
    with pytest.raises(TemplateNotFoundError):
        asyncio.run(service.generate("tpl-x", _excel_request()))
