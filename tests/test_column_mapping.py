import pytest

from certgen.domain.column_mapping import (
    auto_map_columns,
    calculate_similarity,
    format_field_label,
    levenshtein_distance,
    transform_row,
    validate_mapping,
)


def test_synonyms_map_common_headers():
    mapping = auto_map_columns(["Full Name", "Email Address", "No Sertifikat"], ["name", "email", "certificate_no"])
    assert mapping == {"name": "Full Name", "email": "Email Address", "certificate_no": "No Sertifikat"}


def test_exact_match_is_not_stolen_by_an_earlier_field():
    # "nama" is a synonym of "name", but "Nama" is an exact match for the nama field
    mapping = auto_map_columns(["Name", "Nama"], ["name", "nama"])
    assert mapping == {"name": "Name", "nama": "Nama"}


def test_column_used_once():
    assert auto_map_columns(["Nama"], ["name", "nama"]) == {"nama": "Nama"}


def test_similarity_fallback():
    assert auto_map_columns(["Organisation"], ["organization"]) == {"organization": "Organisation"}
    assert auto_map_columns(["Alamat"], ["organization"]) == {}


def test_similarity_score():
    assert calculate_similarity("name", "Name") == 1.0
    assert calculate_similarity("name", "full_name") == pytest.approx(0.85 * 4 / 8)
    assert calculate_similarity("", "x") == 0.0
    assert levenshtein_distance("kitten", "sitting") == 3


def test_unnamed_columns_ignored():
    assert auto_map_columns(["Unnamed: 3"], ["unnamed3"]) == {}


def test_validate_mapping():
    problems = validate_mapping({"name": "Nama", "email": "Surel"}, ["name", "certificate_no"], ["Nama"])
    assert problems == {"missing": ["certificate_no"], "unknown_columns": ["email"]}


def test_transform_row():
    row = {"Nama": "Ana", "Nilai": 90.0, "Kosong": None}
    assert transform_row(row, {"name": "Nama"}) == {"Nama": "Ana", "Nilai": "90", "Kosong": "", "name": "Ana"}


def test_field_labels():
    assert format_field_label("certificate_no") == "Certificate No"
    assert format_field_label("nilai", "{nilai}") == "{nilai}"
