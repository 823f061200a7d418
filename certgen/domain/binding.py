# certgen/domain/binding.py
"""
Turns one recipient (a stored member record or a spreadsheet row) into the
concrete text of every layer.

Layers flagged ``use_default_text`` are not bindable fields themselves, but the
``{variables}`` inside their text are. Tokens typed into any other layer are
never bound, since that layer renders its own field value.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from certgen.domain.column_mapping import ColumnMapping, transform_row
from certgen.domain.errors import UnresolvedVariableError, ValidationError
from certgen.domain.formatters import (
    DEFAULT_DATE_FORMAT,
    DateLike,
    auto_populate_prestasi,
    format_date,
    generate_certificate_no,
    stringify_cell,
)
from certgen.domain.models import (
    CALLER_DATE_FIELDS,
    RESERVED_LAYER_IDS,
    LayoutDocument,
    TextSpan,
)
from certgen.domain.variables import (
    extract_variables_from_layer,
    replace_variables,
    replace_variables_in_rich_text,
    unresolved_variables,
)

MODE_MEMBER = "member"
MODE_EXCEL = "excel"

REQUIRED_FIELDS = ("name", "certificate_no", "issue_date")


@dataclass
class BindableField:
    id: str
    kind: str  # "layer" or "variable"
    surfaces: List[str] = field(default_factory=list)
    required: bool = False

    @property
    def caller_supplied(self) -> bool:
        return self.id in CALLER_DATE_FIELDS


@dataclass
class ResolvedRecipient:
    index: int
    values: Dict[str, str]
    texts: Dict[str, Dict[str, str]]
    rich_texts: Dict[str, Dict[str, List[TextSpan]]]

    @property
    def display_name(self) -> str:
        return self.values.get("name", "") or f"#{self.index + 1}"


def _is_blank(value) -> bool:
    return value is None or str(value).strip() == ""


def _first_filled(*sources: Optional[Mapping[str, object]]) -> Dict[str, str]:
    """Merge where the first non-blank value for a key wins."""
    merged: Dict[str, str] = {}
    for source in sources:
        for key, value in (source or {}).items():
            if _is_blank(merged.get(key)) and not _is_blank(value):
                merged[key] = stringify_cell(value)
            merged.setdefault(key, "")
    return merged


def collect_bindable_fields(document: LayoutDocument) -> List[BindableField]:
    """Layer fields first (document order), then embedded variables not already a layer id."""
    layers: Dict[str, BindableField] = {}
    variables: Dict[str, BindableField] = {}

    for key, surface in document.surfaces().items():
        required_here = RESERVED_LAYER_IDS.get(key, ())
        for layer in surface.text_layers:
            if not layer.is_visible:
                continue
            if layer.use_default_text:
                # the layer renders its own text, so only its tokens need data
                for name in extract_variables_from_layer(layer):
                    var = variables.setdefault(name, BindableField(id=name, kind="variable"))
                    if key not in var.surfaces:
                        var.surfaces.append(key)
                continue
            entry = layers.setdefault(layer.id, BindableField(id=layer.id, kind="layer"))
            if key not in entry.surfaces:
                entry.surfaces.append(key)
            entry.required = entry.required or (layer.id in required_here and layer.id in REQUIRED_FIELDS)

    fields = list(layers.values())
    fields.extend(v for name, v in variables.items() if name not in layers)
    return fields


class DataBindingPipeline:
    def __init__(
        self,
        document: LayoutDocument,
        *,
        date_format: str = DEFAULT_DATE_FORMAT,
        issue_date: DateLike = None,
        expired_date: DateLike = None,
        manual_values: Optional[Mapping[str, object]] = None,
        auto_certificate_no: bool = False,
    ):
        self.document = document
        self.date_format = date_format
        self.issue_date = issue_date
        self.expired_date = expired_date
        self.manual_values = dict(manual_values or {})
        self.auto_certificate_no = auto_certificate_no
        self.fields = collect_bindable_fields(document)

    # --- field discovery ---

    def field_ids(self) -> List[str]:
        return [f.id for f in self.fields]

    def mappable_field_ids(self) -> List[str]:
        """Fields a spreadsheet column may fill (caller-supplied dates excluded)."""
        return [f.id for f in self.fields if not f.caller_supplied]

    def required_field_ids(self) -> List[str]:
        ids = [f.id for f in self.fields if f.required]
        if self.auto_certificate_no:
            ids = [i for i in ids if i != "certificate_no"]
        return ids

    def _caller_dates(self) -> Dict[str, str]:
        return {
            "issue_date": format_date(self.issue_date, self.date_format),
            "expired_date": format_date(self.expired_date, self.date_format),
        }

    # --- binding ---

    def bind_record(self, record: Mapping[str, object]) -> Dict[str, str]:
        """Member mode: fields map by id; dates always come from the caller."""
        lowered = {str(k).lower(): v for k, v in record.items()}
        from_record = {
            f.id: lowered[f.id.lower()]
            for f in self.fields
            if not f.caller_supplied and f.id.lower() in lowered
        }
        return _first_filled(self._caller_dates(), from_record, self.manual_values)

    def bind_spreadsheet_row(self, row: Mapping[str, object], mapping: ColumnMapping) -> Dict[str, str]:
        """Excel mode: mapped columns first; mapped date columns are reformatted."""
        transformed = transform_row(row, mapping)
        for date_field in CALLER_DATE_FIELDS:
            column = mapping.get(date_field)
            if column and column in row and not _is_blank(stringify_cell(row[column])):
                transformed[date_field] = format_date(row[column], self.date_format)
        return _first_filled(transformed, self._caller_dates(), self.manual_values)

    # --- resolution ---

    def resolve(self, values: Mapping[str, str], index: int = 0) -> ResolvedRecipient:
        """
        Validates one recipient and produces ``{surface: {layer_id: text}}``.

        Raises ``ValidationError`` for an empty required field and
        ``UnresolvedVariableError`` for a field or variable with no source at all;
        both are raised before anything is rendered. A field whose key is present
        but blank binds to an empty string.
        """
        data = dict(values)

        if self.auto_certificate_no and _is_blank(data.get("certificate_no")):
            data["certificate_no"] = generate_certificate_no(self.issue_date, index + 1)
        if self.document.is_dual:
            data = auto_populate_prestasi(data)

        for f in self.fields:
            if f.required and _is_blank(data.get(f.id)):
                raise ValidationError(f"Field wajib '{f.id}' kosong untuk penerima #{index + 1}.", field=f.id)
        for f in self.fields:
            if f.required or f.caller_supplied:
                continue
            if f.kind == "variable" and _is_blank(data.get(f.id)):
                raise UnresolvedVariableError(f"Variabel '{{{f.id}}}' belum diisi untuk penerima #{index + 1}.", field=f.id)
            if f.kind == "layer" and f.id not in data:
                raise UnresolvedVariableError(f"Field '{f.id}' tidak memiliki sumber data atau nilai manual.", field=f.id)

        texts: Dict[str, Dict[str, str]] = {}
        rich_texts: Dict[str, Dict[str, List[TextSpan]]] = {}
        for key, surface in self.document.surfaces().items():
            texts[key] = {}
            rich_texts[key] = {}
            for layer in surface.text_layers:
                if not layer.is_visible:
                    continue
                if layer.use_default_text:
                    if layer.rich_text and layer.has_inline_formatting:
                        spans = replace_variables_in_rich_text(layer.rich_text, data)
                        rich_texts[key][layer.id] = spans
                        texts[key][layer.id] = "".join(s.text for s in spans)
                    else:
                        texts[key][layer.id] = replace_variables(layer.template_text(), data)
                    leftover = unresolved_variables(layer.template_text(), data)
                    if leftover:
                        raise UnresolvedVariableError(
                            f"Variabel '{{{leftover[0]}}}' belum diisi untuk penerima #{index + 1}.",
                            field=leftover[0],
                        )
                else:
                    texts[key][layer.id] = data.get(layer.id, "")

        return ResolvedRecipient(index=index, values=data, texts=texts, rich_texts=rich_texts)
