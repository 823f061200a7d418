# certgen/infrastructure/spreadsheet/reader.py
import io
import os
from dataclasses import dataclass, field
from typing import Dict, List

import pandas as pd

from certgen.config.logger import get_logger
from certgen.domain.errors import ValidationError

logger = get_logger(__name__, "SHEET")

NAME_COLUMNS = ("name", "nama")
CSV_EXTENSIONS = (".csv", ".txt")


@dataclass
class SpreadsheetData:
    columns: List[str]
    rows: List[Dict[str, object]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def _read_frame(content: bytes, filename: str) -> pd.DataFrame:
    ext = os.path.splitext(filename or "")[1].lower()
    buffer = io.BytesIO(content)
    if ext in CSV_EXTENSIONS:
        return pd.read_csv(buffer)
    # first sheet only; openpyxl handles .xlsx
    return pd.read_excel(buffer, sheet_name=0)


def read_spreadsheet(content: bytes, filename: str, require_name_column: bool = True) -> SpreadsheetData:
    """
    Header row gives the column names, every following non-empty row is one
    recipient. Empty cells come back as ``None``.
    """
    if not content:
        raise ValidationError("File spreadsheet kosong.", field="file")
    try:
        frame = _read_frame(content, filename)
    except (ValueError, OSError, pd.errors.ParserError) as e:
        raise ValidationError(f"File spreadsheet tidak bisa dibaca: {type(e).__name__}", field="file") from e

    frame.columns = [str(c).strip() for c in frame.columns]
    frame = frame.dropna(how="all")
    columns = [c for c in frame.columns if c and not c.startswith("Unnamed:")]

    if require_name_column and not any(c.lower() in NAME_COLUMNS for c in columns):
        raise ValidationError(
            f"Kolom nama wajib ada (salah satu dari: {', '.join(NAME_COLUMNS)}).", field="name"
        )

    frame = frame[columns].astype(object).where(pd.notna(frame[columns]), None)
    rows = frame.to_dict(orient="records")
    logger.info(f"Spreadsheet '{filename}': {len(columns)} kolom, {len(rows)} baris.")
    return SpreadsheetData(columns=columns, rows=rows)
