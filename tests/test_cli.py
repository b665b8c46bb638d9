import xml.etree.ElementTree as ET
from io import BytesIO

import openpyxl
import pandas as pd
import pytest

from reit_cli import AppConfig, ConfigError, load_config, main

KML_NS = "{http://www.opengis.net/kml/2.2}"


def _save_workbook(path, sheets):
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(name)
        for row in rows:
            ws.append(row)
    wb.save(path)
    return path


def _inspection_row(installation, work_order, device):
    row = [None] * 42
    row[4], row[7], row[41] = installation, work_order, device
    return row


@pytest.fixture
def merge_inputs(tmp_path):
    inspection = _save_workbook(
        tmp_path / "inspecao.xlsx",
        {
            "Resumo": [["ignored"]],
            "PBM-CE - Inspecao": [
                _inspection_row("INSTALACAO", "OT", "DISPOSITIVO"),
                _inspection_row("CND01C1", 1001, "TLM-82"),
                _inspection_row("QXD01P3", 1002, "F-55"),
                _inspection_row("ZZZ9", 1003, "SEMGEO"),
            ],
        },
    )
    recurrence = _save_workbook(
        tmp_path / "reiteradas.xlsx",
        {
            "Plan1": [
                ["ELEMENTO", "DESC", "ALIMENTADOR"],
                ["tlm82", "", "CND01C1"],
                ["R-77", "", "NVR01N1"],
            ]
        },
    )
    return inspection, recurrence


def test_merge_writes_symmetric_difference(tmp_path, merge_inputs):
    inspection, recurrence = merge_inputs
    output = tmp_path / "out" / "merged.xlsx"

    code = main(["merge", "--inspection", str(inspection), "--recurrence", str(recurrence), "--output", str(output)])

    assert code == 0
    frame = pd.read_excel(output, dtype=str, keep_default_na=False)
    assert frame[["TIPO", "DISPOSITIVO_PROTECAO"]].values.tolist() == [
        ["REITERADA", "R-77"],
        ["INSPECAO", "F-55"],
        ["INSPECAO", "SEMGEO"],
    ]
    assert frame.loc[1, "NUMERO_OT"] == "1002"


def test_kml_command_places_rows_and_reports_missing(tmp_path, merge_inputs):
    inspection, recurrence = merge_inputs
    geo = tmp_path / "pontos.kml"
    geo.write_text(
        '<kml xmlns="http://www.opengis.net/kml/2.2"><Document>'
        "<Placemark><name>F-55</name><Point><coordinates>-39.0,-4.9,0</coordinates></Point></Placemark>"
        "<Placemark><name>NVR01N1</name><Point><coordinates>-40.5,-4.7,0</coordinates></Point></Placemark>"
        "</Document></kml>",
        encoding="utf-8",
    )
    output = tmp_path / "resultado.kml"
    missing = tmp_path / "nao_encontrados.xlsx"

    code = main(
        [
            "kml",
            "--inspection", str(inspection),
            "--recurrence", str(recurrence),
            "--geo", str(geo),
            "--output", str(output),
            "--missing-report", str(missing),
        ]
    )

    assert code == 0
    root = ET.fromstring(output.read_bytes())
    regions = [f.find(f"{KML_NS}name").text for f in root.find(f"{KML_NS}Document").findall(f"{KML_NS}Folder")]
    assert regions == ["Nova Russas", "Quixadá"]
    report = pd.read_excel(missing, dtype=str, keep_default_na=False)
    assert report["DISPOSITIVO_PROTECAO"].tolist() == ["SEMGEO"]


def test_missing_inspection_sheet_exits_with_status_2(tmp_path, caplog):
    bad = _save_workbook(tmp_path / "inspecao.xlsx", {"Outra": [["x"]]})
    recurrence = _save_workbook(tmp_path / "reiteradas.xlsx", {"Plan1": [["ELEMENTO"]]})

    code = main(["merge", "--inspection", str(bad), "--recurrence", str(recurrence), "--output", str(tmp_path / "o.xlsx")])

    assert code == 2
    assert "PBM-CE - Inspecao" in caplog.text
    assert not (tmp_path / "o.xlsx").exists()


def test_missing_input_file_exits_with_status_2(tmp_path):
    code = main(["merge", "--inspection", str(tmp_path / "nope.xlsx"), "--recurrence", str(tmp_path / "nada.xlsx")])
    assert code == 2


def _incident_file(tmp_path):
    path = tmp_path / "incidentes.csv"
    path.write_text(
        "INCIDENCIA,CAUSA,ALIMENT.,DATA,ELEMENTO,CONJUNTO\n"
        "1,CHUVA,CND01C1,2024-03-01,T-100,CANINDE\n"
        "2,VENTO,CND01C1,2024-03-02,T-100,CANINDE\n"
        "3,CHUVA,QXD01P1,2024-03-03,F-200,QUIXADA\n"
        "4,CHUVA,QXD01P1,2024-04-03,F-200,QUIXADA\n",
        encoding="utf-8",
    )
    return path


def test_rank_command_writes_report_and_export(tmp_path):
    incidents = _incident_file(tmp_path)
    report = tmp_path / "relatorio.txt"
    export_dir = tmp_path / "exports"
    export_dir.mkdir()

    code = main(
        [
            "rank",
            "--incidents", str(incidents),
            "--start", "2024-03-01",
            "--end", "2024-03-31",
            "--report", str(report),
            "--export", str(export_dir),
        ]
    )

    assert code == 0
    text = report.read_text(encoding="utf-8")
    assert "T-100  *(2 vezes)*" in text
    assert "F-200" not in text
    exports = list(export_dir.glob("Ranking_Elemento_2024-03-01_a_2024-03-31_*.xlsx"))
    assert len(exports) == 1
    frame = pd.read_excel(exports[0], dtype=str)
    assert frame["ELEMENTO"].tolist() == ["T-100", "T-100"]


def test_rank_with_missing_columns_exits_with_status_2(tmp_path, caplog):
    path = tmp_path / "ruim.csv"
    path.write_text("ELEMENTO,DATA\nT-1,2024-01-01\n", encoding="utf-8")

    assert main(["rank", "--incidents", str(path)]) == 2
    assert "CONJUNTO" in caplog.text


def test_heatmap_command_writes_csv(tmp_path):
    output = tmp_path / "heatmap.csv"

    assert main(["heatmap", "--incidents", str(_incident_file(tmp_path)), "--output", str(output)]) == 0

    frame = pd.read_csv(output)
    assert list(frame.columns) == ["CONJUNTO", "LAT", "LON", "OCORRENCIAS"]
    assert dict(zip(frame["CONJUNTO"], frame["OCORRENCIAS"])) == {"CANINDE": 2, "QUIXADA": 2}


def test_store_commands_round_trip(tmp_path, capsys):
    config = tmp_path / "config.yaml"
    config.write_text("store:\n  path: ./db/store.duckdb\n  initial_backoff: 0\n", encoding="utf-8")
    incidents = _incident_file(tmp_path)
    base = ["--config", str(config), "store"]

    assert main([*base, "upload", "--incidents", str(incidents), "--regional", "norte", "--upload-id", "u1"]) == 0
    assert (tmp_path / "db" / "store.duckdb").exists()

    fetched = tmp_path / "fetched.csv"
    assert main([*base, "fetch", "--regional", "NORTE", "--output", str(fetched)]) == 0
    assert pd.read_csv(fetched, dtype=str)["INCIDENCIA"].tolist() == ["4", "3", "2", "1"]

    capsys.readouterr()
    assert main([*base, "uploads"]) == 0
    assert capsys.readouterr().out.startswith("u1\tNORTE\t4\t")

    assert main([*base, "delete", "--upload-id", "u1"]) == 0
    assert main([*base, "fetch"]) == 0


def test_load_config_defaults_and_overrides(tmp_path):
    assert load_config(None) == AppConfig()

    config = tmp_path / "config.yaml"
    config.write_text(
        "merge:\n"
        "  recurrence_sheet: Plan2\n"
        "  inspection_columns: {protection_device: ax}\n"
        "  categories:\n"
        "    feeders: {ABC01X1: Sertão}\n"
        "ranking:\n"
        "  min_count: 3\n"
        "  clusters: {NOVO: [-1.0, -2.0]}\n"
        "store:\n"
        "  path: data/x.duckdb\n"
        "  batch_size: 50\n",
        encoding="utf-8",
    )

    loaded = load_config(config)

    assert loaded.merge.recurrence_sheet == "Plan2"
    assert loaded.merge.inspection_columns == {"new_installation": "E", "work_order": "H", "protection_device": "AX"}
    assert loaded.merge.categories.by_feeder["ABC01X1"] == "Sertão"
    assert loaded.ranking.min_count == 3
    assert loaded.ranking.extra_clusters == {"NOVO": (-1.0, -2.0)}
    assert loaded.store.path == (tmp_path / "data" / "x.duckdb").resolve()
    assert loaded.store.policy().batch_size == 50


@pytest.mark.parametrize(
    "text",
    [
        "merge: [1, 2]\n",
        "merge:\n  recurrence_columns: {element: '1A'}\n",
        "ranking:\n  clusters: {X: [1]}\n",
        "store:\n  batch_size: zero\n",
        "- just\n- a list\n",
        "merge: {\n",
    ],
)
def test_invalid_config_raises_config_error(tmp_path, text):
    config = tmp_path / "config.yaml"
    config.write_text(text, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config)


def test_missing_config_file_exits_with_status_2(tmp_path):
    assert main(["--config", str(tmp_path / "absent.yaml"), "heatmap", "--incidents", "x.csv"]) == 2
