import xml.etree.ElementTree as ET

from reit_merge.categorize import DEFAULT_CATEGORY_TABLE
from reit_merge.geo_archive import Placemark
from reit_merge.kml import (
    GeoPoint,
    build_geo_index,
    emit_kml,
    find_coordinates,
    missing_rows_frame,
    parse_coordinate_tuple,
)
from reit_merge.reconcile import INSPECTION, RECURRENCE, MergedRow

NS = {"k": "http://www.opengis.net/kml/2.2"}


def test_parse_coordinate_tuple():
    assert parse_coordinate_tuple("-39.30,-4.35,0") == GeoPoint(lat=-4.35, lon=-39.30)
    assert parse_coordinate_tuple("-39.30,-4.35") == GeoPoint(lat=-4.35, lon=-39.30)
    assert parse_coordinate_tuple("0,0,0") is None
    assert parse_coordinate_tuple("abc,def") is None
    assert parse_coordinate_tuple("nan,-4") is None
    assert parse_coordinate_tuple("") is None


def test_build_geo_index_first_seen_wins_and_skips_bad_entries():
    index = build_geo_index(
        [
            Placemark("TLM-82", "-39.1,-4.1,0"),
            Placemark("tlm 82", "-40.0,-5.0,0"),
            Placemark("ZERO", "0,0,0"),
            Placemark("", "-39.0,-4.0"),
            Placemark("BAD", "x,y"),
        ]
    )

    assert index == {"TLM82": GeoPoint(lat=-4.1, lon=-39.1)}


def test_find_coordinates_order():
    index = {"INST1": GeoPoint(1.0, 1.0), "CND01C1": GeoPoint(2.0, 2.0), "DEV": GeoPoint(3.0, 3.0)}

    assert find_coordinates(MergedRow("DEV", INSPECTION, "DEV", new_installation="INST1"), index) == GeoPoint(3.0, 3.0)
    assert find_coordinates(MergedRow("NOPE", INSPECTION, "NOPE", new_installation="inst-1"), index) == GeoPoint(1.0, 1.0)
    assert find_coordinates(MergedRow("NOPE", RECURRENCE, "NOPE", feeder="CND01C1"), index) == GeoPoint(2.0, 2.0)
    assert find_coordinates(MergedRow("NOPE", RECURRENCE, "NOPE"), index) is None


def _folders(document):
    root = ET.fromstring(document.encode("utf-8"))
    doc = root.find("k:Document", NS)
    regions = []
    for folder in doc.findall("k:Folder", NS):
        subs = [
            (sub.find("k:name", NS).text, [p.find("k:name", NS).text for p in sub.findall("k:Placemark", NS)])
            for sub in folder.findall("k:Folder", NS)
        ]
        regions.append((folder.find("k:name", NS).text, subs))
    return doc.find("k:name", NS).text, regions


def test_emit_kml_groups_by_region_then_kind():
    rows = [
        MergedRow("F7", RECURRENCE, "F-7", feeder="QXD01P1"),
        MergedRow("ZZ1", INSPECTION, "ZZ1"),
        MergedRow("T1", INSPECTION, "T1", new_installation="CND01C2", work_order="99"),
        MergedRow("R5", RECURRENCE, "R5", feeder="CND01C1"),
    ]
    index = {
        "F7": GeoPoint(-4.9, -39.0),
        "ZZ1": GeoPoint(-3.0, -38.0),
        "T1": GeoPoint(-4.3, -39.3),
        "R5": GeoPoint(-4.4, -39.4),
    }

    result = emit_kml(rows, index)
    name, regions = _folders(result.document)

    assert name == "Resultado - Reiteradas x Inspeção"
    assert result.missing_count == 0
    assert result.placemark_count == 4
    assert regions == [
        ("Canindé", [("🟣 INSPEÇÃO", ["T1"]), ("⚪ REITERADA", ["R5"])]),
        ("Quixadá", [("🟣 INSPEÇÃO", []), ("⚪ REITERADA", ["F-7"])]),
        ("Outros", [("🟣 INSPEÇÃO", ["ZZ1"]), ("⚪ REITERADA", [])]),
    ]


def test_emit_kml_placemark_style_and_coordinates():
    rows = [MergedRow("T1", INSPECTION, "T1", work_order="77"), MergedRow("R1", RECURRENCE, "R1")]
    index = {"T1": GeoPoint(-4.5, -39.25), "R1": GeoPoint(-4.6, -39.35)}

    result = emit_kml(rows, index)
    root = ET.fromstring(result.document.encode("utf-8"))
    placemarks = {p.find("k:name", NS).text: p for p in root.iter("{http://www.opengis.net/kml/2.2}Placemark")}

    inspection = placemarks["T1"]
    assert inspection.find(".//k:IconStyle/k:color", NS).text == "ff800080"
    assert inspection.find(".//k:IconStyle/k:scale", NS).text == "1.8"
    assert inspection.find(".//k:Point/k:coordinates", NS).text == "-39.25,-4.5,0"
    description = inspection.find("k:description", NS).text
    assert "<b>OT:</b> 77" in description
    assert "<b>INSTALACAO_NOVA:</b> -" in description
    assert placemarks["R1"].find(".//k:IconStyle/k:color", NS).text == "ffffffff"


def test_emit_kml_escapes_names():
    rows = [MergedRow("AB", INSPECTION, "A&B <1>")]
    result = emit_kml(rows, {"AB1": GeoPoint(-4.0, -39.0)})

    assert "A&amp;B &lt;1&gt;" in result.document
    root = ET.fromstring(result.document.encode("utf-8"))
    names = [n.text for n in root.iter("{http://www.opengis.net/kml/2.2}name")]
    assert "A&B <1>" in names


def test_emit_kml_reports_rows_without_coordinates():
    rows = [
        MergedRow("T1", INSPECTION, "T1", new_installation="I-1", work_order="5"),
        MergedRow("R1", RECURRENCE, "R1", feeder="CND01C1"),
    ]

    result = emit_kml(rows, {"T1": GeoPoint(-4.0, -39.0)})

    assert result.missing_count == 1
    assert result.placemark_count == 1
    assert result.missing_rows == [
        {
            "TIPO": "REITERADA",
            "DISPOSITIVO_PROTECAO": "R1",
            "INSTALACAO_NOVA": "",
            "ALIMENTADOR": "CND01C1",
            "NUMERO_OT": "",
        }
    ]
    frame = missing_rows_frame(result)
    assert frame.columns == ["TIPO", "DISPOSITIVO_PROTECAO", "INSTALACAO_NOVA", "ALIMENTADOR", "NUMERO_OT"]
    assert frame.height == 1


def test_emit_kml_with_nothing_resolved_is_still_valid():
    result = emit_kml([MergedRow("X", INSPECTION, "X")], {})
    name, regions = _folders(result.document)

    assert regions == []
    assert result.missing_count == 1


def test_extra_region_goes_before_default():
    table = DEFAULT_CATEGORY_TABLE.with_overrides({"ABC01X1": "Sertão"})
    rows = [
        MergedRow("Z1", INSPECTION, "Z1"),
        MergedRow("S1", RECURRENCE, "S1", feeder="ABC01X1"),
        MergedRow("C1", RECURRENCE, "C1", feeder="CAT01C1"),
    ]
    index = {"Z1": GeoPoint(-1.0, -1.0), "S1": GeoPoint(-2.0, -2.0), "C1": GeoPoint(-3.0, -3.0)}

    _, regions = _folders(emit_kml(rows, index, table).document)

    assert [name for name, _ in regions] == ["Crateús", "Sertão", "Outros"]


def _single_inspection_merge():
    from reit_merge.reconcile import build_inspection_rows, merge_rows

    header = [""] * 42
    row = [""] * 42
    row[4], row[7], row[41] = "INST1", "OT1", "CND01C1"
    return merge_rows(build_inspection_rows([header, row]), [])


def test_single_inspection_row_end_to_end():
    merged = _single_inspection_merge()
    assert [(r.kind, r.protection_device) for r in merged] == [(INSPECTION, "CND01C1")]

    index = build_geo_index([Placemark("CND01C1", "-39.3,-4.3,0")])
    result = emit_kml(merged, index)

    _, regions = _folders(result.document)
    assert regions == [("Canindé", [("🟣 INSPEÇÃO", ["CND01C1"]), ("⚪ REITERADA", [])])]
    assert "<coordinates>-39.3,-4.3,0</coordinates>" in result.document
    assert result.missing_count == 0


def test_single_inspection_row_without_geo():
    result = emit_kml(_single_inspection_merge(), build_geo_index([]))

    assert result.placemark_count == 0
    assert result.missing_count == 1
    assert result.missing_rows == [
        {
            "TIPO": "INSPECAO",
            "DISPOSITIVO_PROTECAO": "CND01C1",
            "INSTALACAO_NOVA": "INST1",
            "ALIMENTADOR": "",
            "NUMERO_OT": "OT1",
        }
    ]
