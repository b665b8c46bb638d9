from __future__ import annotations

from typing import Dict, Mapping, Sequence, Tuple


class StructuralError(ValueError):
    """Raised when a sheet, required column or geo document is unusable."""


INSPECTION_SHEET = "PBM-CE - Inspecao"

# logical field -> column letter
INSPECTION_COLUMNS: Mapping[str, str] = {
    "new_installation": "E",
    "work_order": "H",
    "protection_device": "AP",
}

RECURRENCE_COLUMNS: Mapping[str, str] = {
    "element": "A",
    "feeder": "C",
}

EXPORT_COLUMNS: Tuple[str, ...] = (
    "TIPO",
    "DISPOSITIVO_PROTECAO",
    "ALIMENTADOR",
    "INSTALACAO_NOVA",
    "NUMERO_OT",
)

MISSING_COLUMNS: Tuple[str, ...] = (
    "TIPO",
    "DISPOSITIVO_PROTECAO",
    "INSTALACAO_NOVA",
    "ALIMENTADOR",
    "NUMERO_OT",
)

REQUIRED_INCIDENT_COLUMNS: Tuple[str, ...] = (
    "INCIDENCIA",
    "CAUSA",
    "ALIMENT.",
    "DATA",
    "ELEMENTO",
    "CONJUNTO",
)


def _expand(category: str, codes: Sequence[str]) -> Dict[str, str]:
    return {code: category for code in codes}


CATEGORY_BY_FEEDER: Mapping[str, str] = {
    **_expand(
        "Canindé",
        [
            "CND01C1", "CND01C2", "CND01C3", "CND01C4", "CND01C5", "CND01C6",
            "INP01N3", "INP01N4", "INP01N5",
            "BVG01P1", "BVG01P2", "BVG01P3", "BVG01P4",
            "MCA01L1", "MCA01L2", "MCA01L3",
        ],
    ),
    **_expand(
        "Quixadá",
        [
            "BNB01Y2",
            "JTM01N2",
            "QXD01P1", "QXD01P2", "QXD01P3", "QXD01P4", "QXD01P5", "QXD01P6",
            "QXB01N2", "QXB01N3", "QXB01N4", "QXB01N5", "QXB01N6", "QXB01N7",
        ],
    ),
    **_expand(
        "Nova Russas",
        [
            "IPU01L2", "IPU01L3", "IPU01L4", "IPU01L5",
            "ARR01L1", "ARR01L2", "ARR01L3",
            "SQT01F2", "SQT01F3", "SQT01F4",
            "ARU01Y1", "ARU01Y2", "ARU01Y4", "ARU01Y5", "ARU01Y6", "ARU01Y7", "ARU01Y8",
            "NVR01N1", "NVR01N2", "NVR01N3", "NVR01N5",
            "MTB01S2", "MTB01S3", "MTB01S4",
        ],
    ),
    **_expand(
        "Crateús",
        [
            "IDP01I1", "IDP01I2", "IDP01I3", "IDP01I4",
            "CAT01C1", "CAT01C2", "CAT01C3", "CAT01C4", "CAT01C5", "CAT01C6", "CAT01C7",
        ],
    ),
}

CATEGORY_BY_PREFIX: Mapping[str, str] = {
    "CND": "Canindé", "INP": "Canindé", "BVG": "Canindé", "MCA": "Canindé",
    "BNB": "Quixadá", "JTM": "Quixadá", "QXD": "Quixadá", "QXB": "Quixadá",
    "IPU": "Nova Russas", "ARR": "Nova Russas", "SQT": "Nova Russas",
    "ARU": "Nova Russas", "NVR": "Nova Russas", "MTB": "Nova Russas",
    "IDP": "Crateús", "CAT": "Crateús",
}

DEFAULT_CATEGORY = "Outros"
CATEGORY_ORDER: Tuple[str, ...] = ("Canindé", "Nova Russas", "Quixadá", "Crateús", DEFAULT_CATEGORY)

# KML colors are aabbggrr
INSPECTION_COLOR = "ff800080"
RECURRENCE_COLOR = "ffffffff"
PUSH_PIN_ICON = "http://maps.google.com/mapfiles/kml/pushpin/wht-pushpin.png"
KML_DOCUMENT_NAME = "Resultado - Reiteradas x Inspeção"

MIN_REPEAT_COUNT = 2
MAX_SUMMARY_ITEMS = 12
NOT_INFORMED = "Não informado"

# CONJUNTO -> (lat, lon)
CLUSTER_COORDINATES: Mapping[str, Tuple[float, float]] = {
    "FORTALEZA": (-3.7172, -38.5433),
    "MARACANAU": (-3.8770, -38.6256),
    "CAUCAIA": (-3.7361, -38.6533),
    "JUAZEIRO DO NORTE": (-7.2133, -39.3153),
    "SOBRAL": (-3.6856, -40.3442),
    "CRATO": (-7.2337, -39.4097),
    "ITAPIPOCA": (-3.4944, -39.5786),
    "MARANGUAPE": (-3.8906, -38.6853),
    "QUIXADA": (-4.9716, -39.0161),
    "IGUATU": (-6.3614, -39.2978),
    "PACATUBA": (-3.9808, -38.6181),
    "AQUIRAZ": (-3.9017, -38.3914),
    "PARACURU": (-3.4106, -39.0317),
    "HORIZONTE": (-4.0917, -38.4956),
    "EUSEBIO": (-3.8936, -38.4508),
    "CANINDE": (-4.3579, -39.3020),
    "TIANGUA": (-3.7322, -40.9917),
    "CRATEUS": (-5.1986, -40.6689),
    "BARBALHA": (-7.3056, -39.3036),
    "ARACATI": (-4.5606, -37.7717),
    "ARARAS I": (-4.2096, -40.4498),
    "IPU": (-4.3256, -40.7109),
    "INDEPENDENCIA": (-5.3964, -40.3086),
    "NOVA RUSSAS": (-4.7044, -40.5669),
    "BANABUIU": (-5.3140, -38.9230),
    "SANTA QUITERIA": (-4.3319, -40.1570),
    "MONSENHOR TABOSA": (-4.7861, -40.0606),
    "MACAOCA": (-4.7626, -39.4837),
    "BOA VIAGEM": (-5.1310, -39.7336),
    "ARARENDA": (-4.7525, -40.8330),
    "QUIXERAMOBIM": (-5.0939, -39.3619),
    "INHUPORANGA": (-4.0908, -39.0585),
}

ALL_REGIONS = "TODOS"


def canonical_region(value: str | None) -> str:
    """Canonical partition key for a regional label."""

    region = str(value or "").strip().upper()
    if region in {"CENTRO NORTE", "CENTRO_NORTE", "CENTRONORTE"}:
        return "CENTRO NORTE"
    if region in {"ATLANTICO", "ATLÂNTICO"}:
        return "ATLANTICO"
    return region or ALL_REGIONS
