import pytest

from certgen.domain.binding import DataBindingPipeline, collect_bindable_fields
from certgen.domain.errors import UnresolvedVariableError, ValidationError
from certgen.domain.layout import DESCRIPTION_TEXT


def test_default_document_fields(editor):
    fields = {f.id: f for f in collect_bindable_fields(editor.document)}

    assert list(fields) == ["name", "certificate_no", "issue_date"]
    assert all(f.required for f in fields.values())
    # description uses its own text, so it is not a field
    assert "description" not in fields


def test_field_lists(editor):
    pipeline = DataBindingPipeline(editor.document)
    assert pipeline.mappable_field_ids() == ["name", "certificate_no"]
    assert pipeline.required_field_ids() == ["name", "certificate_no", "issue_date"]

    auto = DataBindingPipeline(editor.document, auto_certificate_no=True)
    assert auto.required_field_ids() == ["name", "issue_date"]


def test_hidden_layers_are_not_fields(editor):
    editor.toggle_visibility("certificate", "certificate_no")
    assert [f.id for f in collect_bindable_fields(editor.document)] == ["name", "issue_date"]


def test_bind_member_record(editor):
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30")
    values = pipeline.bind_record({"Name": "Ana", "certificate_no": "C-1", "issue_date": "ignored"})

    assert values["name"] == "Ana"
    assert values["certificate_no"] == "C-1"
    assert values["issue_date"] == "30 Oktober 2025"
    assert values["expired_date"] == ""

    resolved = pipeline.resolve(values)
    assert resolved.texts["certificate"]["name"] == "Ana"
    assert resolved.texts["certificate"]["issue_date"] == "30 Oktober 2025"
    assert resolved.texts["certificate"]["description"] == DESCRIPTION_TEXT
    assert resolved.display_name == "Ana"


def test_manual_values_fill_gaps_only(editor):
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30",
                                   manual_values={"name": "Manual", "certificate_no": "M-1"})
    values = pipeline.bind_record({"name": "Ana", "certificate_no": " "})

    assert values["name"] == "Ana"
    assert values["certificate_no"] == "M-1"


def test_blank_required_field_fails(editor):
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30")

    with pytest.raises(ValidationError) as exc:
        pipeline.resolve(pipeline.bind_record({"name": "  ", "certificate_no": "C-1"}), index=2)
    assert exc.value.field == "name"
    assert "#3" in exc.value.detail


def test_missing_issue_date_fails(editor):
    pipeline = DataBindingPipeline(editor.document)
    with pytest.raises(ValidationError) as exc:
        pipeline.resolve(pipeline.bind_record({"name": "Ana", "certificate_no": "C-1"}))
    assert exc.value.field == "issue_date"


def test_auto_certificate_number(editor):
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30", auto_certificate_no=True)
    resolved = pipeline.resolve(pipeline.bind_record({"name": "Ana"}), index=2)

    assert resolved.values["certificate_no"] == "251030003"
    assert resolved.texts["certificate"]["certificate_no"] == "251030003"


def test_embedded_variables(editor):
    editor.set_layer_text("certificate", "description", "Selamat {name} atas {event}")
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30")
    assert pipeline.field_ids() == ["name", "certificate_no", "issue_date", "event"]

    record = {"name": "Ana", "certificate_no": "C-1"}
    with pytest.raises(UnresolvedVariableError) as exc:
        pipeline.resolve(pipeline.bind_record(record))
    assert exc.value.field == "event"

    resolved = pipeline.resolve(pipeline.bind_record({**record, "event": "Lomba"}))
    assert resolved.texts["certificate"]["description"] == "Selamat Ana atas Lomba"


def test_rich_text_variables_keep_styling(editor):
    editor.set_layer_text("certificate", "description", "Selamat {name} atas {event}")
    editor.apply_inline_style("certificate", "description", 20, 27, {"font_weight": "bold"})
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30", manual_values={"event": "Lomba"})

    resolved = pipeline.resolve(pipeline.bind_record({"name": "Ana", "certificate_no": "C-1"}))

    spans = resolved.rich_texts["certificate"]["description"]
    assert [s.text for s in spans] == ["Selamat Ana atas ", "Lomba"]
    assert spans[1].font_weight == "bold"
    assert resolved.texts["certificate"]["description"] == "Selamat Ana atas Lomba"


def test_variable_split_by_inline_style_is_replaced(editor):
    editor.set_layer_text("certificate", "description", "Halo {nama}")
    editor.apply_inline_style("certificate", "description", 0, 8, {"font_weight": "bold"})
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30", manual_values={"nama": "Ana"})

    resolved = pipeline.resolve(pipeline.bind_record({"name": "Ana", "certificate_no": "C-1"}))

    assert resolved.texts["certificate"]["description"] == "Halo Ana"
    assert [s.text for s in resolved.rich_texts["certificate"]["description"]] == ["Halo Ana"]


def test_tokens_in_bound_layers_are_not_fields(editor):
    editor.add_text_layer("certificate", "organization", default_text="{kota}")
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30")

    assert "kota" not in pipeline.field_ids()
    resolved = pipeline.resolve(pipeline.bind_record({"name": "Ana", "certificate_no": "C-1", "organization": "OSIS"}))
    assert resolved.texts["certificate"]["organization"] == "OSIS"


def test_layer_without_any_source_fails(editor):
    editor.add_text_layer("certificate", "organization")
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30")
    record = {"name": "Ana", "certificate_no": "C-1"}

    with pytest.raises(UnresolvedVariableError):
        pipeline.resolve(pipeline.bind_record(record))

    # present but blank binds to an empty string
    resolved = pipeline.resolve(pipeline.bind_record({**record, "organization": ""}))
    assert resolved.texts["certificate"]["organization"] == ""


def test_spreadsheet_row(editor):
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30", date_format="dd-mm-yyyy")
    mapping = {"name": "Nama", "certificate_no": "No", "issue_date": "Tanggal"}

    values = pipeline.bind_spreadsheet_row({"Nama": "Budi", "No": 17.0, "Tanggal": "2025-01-05"}, mapping)
    assert values["name"] == "Budi"
    assert values["certificate_no"] == "17"
    # a mapped date column wins over the caller's date
    assert values["issue_date"] == "05-01-2025"

    values = pipeline.bind_spreadsheet_row({"Nama": "Cici", "No": "X", "Tanggal": None}, mapping)
    assert values["issue_date"] == "30-10-2025"


def test_score_surface_predicate(editor):
    editor.ensure_score_surface()
    editor.add_text_layer("score", "predikat", default_text="{nilai} {prestasi}", use_default_text=True)
    pipeline = DataBindingPipeline(editor.document, issue_date="2025-10-30")

    resolved = pipeline.resolve(pipeline.bind_record({"name": "Ana", "certificate_no": "C-1", "nilai": 92}))

    assert resolved.texts["score"]["predikat"] == "92 SANGAT BAIK"
    assert resolved.texts["score"]["name"] == "Ana"
