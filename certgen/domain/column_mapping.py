# certgen/domain/column_mapping.py
"""
Matching spreadsheet columns to layer ids / variables.

Matching runs in passes of decreasing strictness so that a strong match for
one field is never stolen by a weak match for an earlier field: exact
(case-insensitive), normalized (punctuation / whitespace / underscores
ignored), synonym table, then a similarity score above a threshold. A column
is assigned to at most one field.
"""
import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from certgen.domain.formatters import stringify_cell

ColumnMapping = Dict[str, str]

DEFAULT_SIMILARITY_THRESHOLD = 0.6

SYNONYMS: Dict[str, Sequence[str]] = {
    "name": ("nama", "full name", "nama lengkap", "participant", "peserta", "student name", "nama peserta"),
    "email": ("e-mail", "mail", "surel", "email address", "alamat email"),
    "certificate_no": ("no sertifikat", "nomor sertifikat", "certificate number", "cert no", "no"),
    "issue_date": ("tanggal terbit", "tanggal", "date", "issued"),
    "expired_date": ("tanggal kadaluarsa", "expiry date", "valid until", "berlaku hingga"),
    "description": ("deskripsi", "keterangan"),
    "organization": ("organisasi", "instansi", "company", "perusahaan"),
    "nilai": ("score", "nilai akhir", "final score"),
    "prestasi": ("predikat", "grade"),
}

_NON_ALNUM = re.compile(r"[^0-9a-z]+")


def normalize_name(value: str) -> str:
    return _NON_ALNUM.sub("", str(value).lower())


def levenshtein_distance(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ch_a in enumerate(a, start=1):
        current = [i]
        for j, ch_b in enumerate(b, start=1):
            cost = 0 if ch_a == ch_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def calculate_similarity(a: str, b: str) -> float:
    """1.0 for a normalized match, 0.85 x length ratio for containment, else edit-distance ratio."""
    norm_a, norm_b = normalize_name(a), normalize_name(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    if norm_a in norm_b or norm_b in norm_a:
        return 0.85 * min(len(norm_a), len(norm_b)) / max(len(norm_a), len(norm_b))
    longest = max(len(norm_a), len(norm_b))
    return max(0.0, 1 - levenshtein_distance(norm_a, norm_b) / longest)


def _synonyms_for(field: str) -> List[str]:
    return [normalize_name(s) for s in SYNONYMS.get(field.lower(), ())]


def auto_map_columns(
    columns: Iterable[str],
    fields: Iterable[str],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> ColumnMapping:
    """Returns ``{field_id: column_name}`` for every field that found a column."""
    columns = [c for c in columns if str(c).strip() and not str(c).startswith("Unnamed:")]
    fields = list(dict.fromkeys(fields))
    mapping: ColumnMapping = {}
    used = set()

    def _assign(match) -> None:
        for field in fields:
            if field in mapping:
                continue
            for column in columns:
                if column not in used and match(field, column):
                    mapping[field] = column
                    used.add(column)
                    break

    _assign(lambda f, c: f.lower() == str(c).strip().lower())
    _assign(lambda f, c: normalize_name(f) == normalize_name(c))
    _assign(lambda f, c: normalize_name(c) in _synonyms_for(f))

    for field in fields:
        if field in mapping:
            continue
        best: Optional[str] = None
        best_score = 0.0
        for column in columns:
            if column in used:
                continue
            score = calculate_similarity(field, column)
            if score >= threshold and score > best_score:
                best, best_score = column, score
        if best is not None:
            mapping[field] = best
            used.add(best)

    return mapping


def validate_mapping(
    mapping: Mapping[str, str],
    required_fields: Iterable[str],
    columns: Optional[Iterable[str]] = None,
) -> Dict[str, List[str]]:
    """``missing``: required fields with no column; ``unknown_columns``: mapped to a column the sheet lacks."""
    missing = [f for f in required_fields if not str(mapping.get(f) or "").strip()]
    unknown: List[str] = []
    if columns is not None:
        available = set(columns)
        unknown = [f for f, col in mapping.items() if col and col not in available]
    return {"missing": missing, "unknown_columns": unknown}


def transform_row(row: Mapping[str, object], mapping: Mapping[str, str]) -> Dict[str, str]:
    """Row keyed by field id; unmapped columns are carried through under their own name."""
    transformed = {str(k): stringify_cell(v) for k, v in row.items()}
    for field, column in mapping.items():
        if column in row:
            transformed[field] = stringify_cell(row[column])
    return transformed


def format_field_label(field_id: str, default_text: Optional[str] = None) -> str:
    """``{var}`` for pure-variable fields, Title Case for layer ids."""
    if "{" in field_id or "}" in field_id:
        return field_id
    if default_text and default_text.strip() == "{" + field_id + "}":
        return "{" + field_id + "}"
    return " ".join(word[:1].upper() + word[1:] for word in field_id.split("_"))
