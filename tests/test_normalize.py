import pytest

from reit_common.normalize import (
    cell_text,
    clean_one_line,
    column_letter_to_index,
    fold_text,
    normalize_header,
    normalize_key,
    normalize_label,
    resolve_field,
)
from reit_common.schema import canonical_region


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("TLM-82", "TLM82"),
        ("  tlm 82 ", "TLM82"),
        ("Canindé", "CANINDE"),
        (None, ""),
        (1234, "1234"),
        ("---", ""),
    ],
)
def test_normalize_key_strict(raw, expected):
    assert normalize_key(raw) == expected


def test_normalize_label_keeps_word_boundaries():
    assert normalize_label("Santa-Quitéria") == "SANTA QUITERIA"
    assert normalize_label("  boa__viagem  ") == "BOA VIAGEM"
    assert normalize_label(None) == ""


def test_normalizers_are_idempotent():
    for raw in ["Nova Russas", "açaí_01-x", "  QXD01P1 ", "Crateús / Norte"]:
        assert normalize_key(normalize_key(raw)) == normalize_key(raw)
        assert normalize_label(normalize_label(raw)) == normalize_label(raw)


def test_fold_and_header_helpers():
    assert fold_text("  ação ") == "ACAO"
    assert normalize_header(" Aliment. ") == "ALIMENT"
    assert normalize_header("Incidência") == "INCIDENCIA"
    assert clean_one_line("T-1\n  23 ") == "T-1 23"


def test_cell_text_drops_integral_float_suffix():
    assert cell_text(123.0) == "123"
    assert cell_text(1.5) == "1.5"
    assert cell_text(None) == ""
    assert cell_text("  OT-9 ") == "OT-9"


def test_column_letter_to_index_is_zero_based():
    assert column_letter_to_index("A") == 0
    assert column_letter_to_index("e") == 4
    assert column_letter_to_index("AP") == 41


def test_resolve_field_tiers():
    """Exact, punctuation-free, case-insensitive, then strict-normalized lookups."""

    assert resolve_field({"ALIMENT.": "A1", "ALIMENT": "A2"}, "ALIMENT.") == "A1"
    assert resolve_field({"ALIMENT": "A2"}, "ALIMENT.") == "A2"
    assert resolve_field({"aliment.": "A3"}, "ALIMENT.") == "A3"
    assert resolve_field({" Aliment ": "A4"}, "ALIMENT.") == "A4"
    assert resolve_field({"OTHER": "x"}, "ALIMENT.") == ""
    assert resolve_field(None, "ALIMENT.") == ""


def test_resolve_field_treats_none_as_missing():
    assert resolve_field({"CAUSA": None, "causa": "CHUVA"}, "CAUSA") == "CHUVA"
    assert resolve_field({"CAUSA": None}, "CAUSA") == ""


def test_resolve_field_keeps_falsy_values():
    assert resolve_field({"COUNT": 0}, "COUNT") == 0


def test_canonical_region_aliases():
    assert canonical_region("centro_norte") == "CENTRO NORTE"
    assert canonical_region("CentroNorte") == "CENTRO NORTE"
    assert canonical_region("Atlântico") == "ATLANTICO"
    assert canonical_region(" norte ") == "NORTE"
    assert canonical_region("") == "TODOS"
    assert canonical_region(None) == "TODOS"
