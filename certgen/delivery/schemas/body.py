from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any, Dict, List, Literal, Optional

from certgen.domain.binding import MODE_EXCEL, MODE_MEMBER
from certgen.domain.formatters import DATE_FORMATS, DEFAULT_DATE_FORMAT


class GenerateRequest(BaseModel):
    mode: Literal["member", "excel"]

    # member mode: stored records plus operator-supplied values
    member_ids: List[str] = Field(default_factory=list)

    # excel mode: parsed rows (column -> cell) and the confirmed column mapping (field -> column)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    column_mapping: Dict[str, str] = Field(default_factory=dict)

    manual_values: Dict[str, Any] = Field(default_factory=dict)
    issue_date: Optional[str] = None
    expired_date: Optional[str] = None
    date_format: str = DEFAULT_DATE_FORMAT
    auto_certificate_no: bool = False

    @field_validator("date_format")
    @classmethod
    def known_date_format(cls, value: str) -> str:
        if value not in DATE_FORMATS:
            raise ValueError(f"date_format must be one of {', '.join(DATE_FORMATS)}")
        return value

    @model_validator(mode="after")
    def source_present(self):
        if self.mode == MODE_MEMBER and not self.member_ids:
            raise ValueError("member_ids is required in member mode")
        if self.mode == MODE_EXCEL and not self.rows:
            raise ValueError("rows is required in excel mode")
        return self


class ErrorDetail(BaseModel):
    code: str
    detail: str
    field: Optional[str] = None


class RecipientResult(BaseModel):
    index: int
    status: Literal["succeeded", "failed"]
    name: Optional[str] = None
    member_id: Optional[str] = None
    certificate_no: Optional[str] = None
    certificate_url: Optional[str] = None
    score_url: Optional[str] = None
    degraded: bool = False               # drawn by the fallback renderer
    error: Optional[ErrorDetail] = None


class GenerateResponse(BaseModel):
    run_id: str
    template_id: str
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False
    results: List[RecipientResult] = Field(default_factory=list)


class SpreadsheetPreview(BaseModel):
    filename: str
    columns: List[str]
    row_count: int
    rows: List[Dict[str, Any]]
    column_mapping: Dict[str, str]
    unmapped_fields: List[str]
    missing_required: List[str]


class LayoutSaved(BaseModel):
    template_id: str
    last_saved_at: Optional[str] = None
    layout: Dict[str, Any]
