from io import BytesIO
from zipfile import ZipFile

import pytest

from reit_common.schema import StructuralError
from reit_merge.geo_archive import Placemark, read_placemarks

KML = """<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
<Document>
  <Folder>
    <Placemark><name>TLM-82</name><Point><coordinates>
      -39.30,-4.35,0 -39.31,-4.36,0
    </coordinates></Point></Placemark>
    <Placemark><name>NO POINT</name></Placemark>
  </Folder>
</Document>
</kml>"""


def _kmz(entries):
    buffer = BytesIO()
    with ZipFile(buffer, "w") as zf:
        for name, text in entries.items():
            zf.writestr(name, text)
    return buffer.getvalue()


def test_read_kml_with_default_namespace():
    placemarks = read_placemarks(KML.encode("utf-8"), "pontos.kml")

    assert placemarks == [
        Placemark(name="TLM-82", coordinates="-39.30,-4.35,0"),
        Placemark(name="NO POINT", coordinates=""),
    ]


def test_read_kml_without_namespace():
    text = "<kml><Placemark><name>A</name><coordinates>-1,-2</coordinates></Placemark></kml>"
    assert read_placemarks(text.encode("utf-8"), "x.KML") == [Placemark("A", "-1,-2")]


def test_read_kmz_prefers_doc_kml():
    other = KML.replace("TLM-82", "OTHER")
    data = _kmz({"aaa.kml": other, "doc.kml": KML})

    assert read_placemarks(data, "map.kmz")[0].name == "TLM-82"


def test_read_kmz_falls_back_to_first_kml_entry():
    data = _kmz({"images/icon.png": "png", "layers/pontos.kml": KML})

    assert read_placemarks(data, "map.kmz")[0].name == "TLM-82"


def test_kmz_without_kml_entry_is_structural_error():
    with pytest.raises(StructuralError):
        read_placemarks(_kmz({"readme.txt": "nothing"}), "map.kmz")


def test_corrupt_kmz_is_structural_error():
    with pytest.raises(StructuralError):
        read_placemarks(b"not a zip", "map.kmz")


def test_malformed_kml_is_structural_error():
    with pytest.raises(StructuralError):
        read_placemarks(b"<kml><Placemark>", "broken.kml")
