"""Keyword rules for certificate type detection and document classification."""

import re

from ..schemas.analysis import DocumentClassification


def _any(*phrases: str) -> re.Pattern:
    return re.compile(
        "|".join(rf"\b{re.escape(phrase)}\b" for phrase in phrases), re.IGNORECASE
    )


# Evaluated in order; the first matching rule wins.
_TYPE_RULES: list[tuple[str, re.Pattern]] = [
    ("GAS", _any("LANDLORD GAS SAFETY", "GAS SAFETY RECORD", "CP12", "LGSR")),
    ("EICR", _any("ELECTRICAL INSTALLATION CONDITION REPORT", "EICR", "PERIODIC INSPECTION")),
    ("EPC", _any("ENERGY PERFORMANCE CERTIFICATE", "EPC", "ENERGY EFFICIENCY RATING")),
    ("FRA", _any("FIRE RISK ASSESSMENT", "FRA", "PAS 79", "REGULATORY REFORM")),
    ("PAT", _any("PORTABLE APPLIANCE", "PAT TEST", "ELECTRICAL EQUIPMENT TEST")),
    ("LEGIONELLA", _any("LEGIONELLA", "WATER HYGIENE", "L8")),
    ("ASBESTOS", _any("ASBESTOS", "HSG264", "MANAGEMENT SURVEY")),
    ("LIFT", _any("LIFT", "LOLER", "LIFTING EQUIPMENT")),
    ("EMLT", _any("EMERGENCY LIGHTING", "BS 5266")),
    ("FIRE_ALARM", _any("FIRE ALARM", "BS 5839")),
    ("SMOKE_CO", _any("SMOKE ALARM", "CO ALARM", "CARBON MONOXIDE")),
    ("FIRE_DOOR", _any("FIRE DOOR", "DOOR INSPECTION")),
    ("OIL_TANK", _any("OIL TANK", "OFTEC")),
    ("LPG", _any("LPG")),
    ("SOLID", _any("SOLID FUEL", "HETAS")),
    ("ASHP", _any("AIR SOURCE HEAT PUMP", "ASHP")),
    ("GSHP", _any("GROUND SOURCE", "GSHP")),
]

_GAS_SAFE = _any("GAS SAFE")
_APPLIANCE = _any("APPLIANCE", "APPLIANCES")
_BS7671 = _any("BS 7671", "BS7671")
_ELECTRICAL = _any("ELECTRICAL")
_OIL = _any("OIL")
_HEATING = _any("HEATING", "BOILER")
_HEAT_PUMP = _any("HEAT PUMP")

STRUCTURED_TYPES = {"GAS", "EICR", "EPC", "PAT", "EMLT", "FIRE_ALARM", "SMOKE_CO"}
COMPLEX_TYPES = {"FRA", "ASBESTOS", "LEGIONELLA"}
HANDWRITING_INDICATORS = ("HANDWRITTEN", "MANUSCRIPT", "SIGNATURE:")


def detect_certificate_type(text: str) -> str:
    """Best-guess certificate type code from document text, or UNKNOWN."""
    if not text:
        return "UNKNOWN"

    for code, pattern in _TYPE_RULES:
        if pattern.search(text):
            return code

    # Weaker combined signals, only when no explicit title matched
    if _GAS_SAFE.search(text) and _APPLIANCE.search(text):
        return "GAS"
    if _BS7671.search(text) and _ELECTRICAL.search(text):
        return "EICR"
    if _OIL.search(text) and _HEATING.search(text):
        return "OIL"
    if _HEAT_PUMP.search(text):
        return "ASHP"
    return "UNKNOWN"


def classify_document(text: str, certificate_type: str) -> DocumentClassification:
    if certificate_type in STRUCTURED_TYPES:
        return DocumentClassification.STRUCTURED_CERTIFICATE
    if certificate_type in COMPLEX_TYPES:
        return DocumentClassification.COMPLEX_DOCUMENT
    upper = (text or "").upper()
    if any(indicator in upper for indicator in HANDWRITING_INDICATORS):
        return DocumentClassification.HANDWRITTEN_CONTENT
    return DocumentClassification.UNKNOWN
