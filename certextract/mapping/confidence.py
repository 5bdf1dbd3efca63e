"""
Mapping of provider payloads to ExtractedCertificateData, and confidence
scoring.

Provider output is untrusted: any JSON-ish mapping, with snake_case or
camelCase keys, wrong types or missing fields. Mapping never raises; bad
values become None or empty collections.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from ..schemas.certificate import (
    ApplianceOutcome,
    ApplianceRecord,
    DefectPriority,
    DefectRecord,
    ExtractedCertificateData,
    Outcome,
)

logger = logging.getLogger(__name__)

CONFIDENCE_FLOOR = 0.1
CONFIDENCE_CEILING = 0.95
LOAD_BEARING_FIELD_COUNT = 7


@dataclass(frozen=True)
class ParsedJson:
    value: Any


@dataclass(frozen=True)
class MalformedResponse:
    reason: str
    raw: str


JsonParseResult = Union[ParsedJson, MalformedResponse]

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def parse_json_response(text: Optional[str]) -> JsonParseResult:
    """
    Parse a model response that should contain one JSON object.

    Tolerates fenced code blocks and prose around the object.
    """
    if not text or not text.strip():
        return MalformedResponse("empty response", text or "")

    candidate = text.strip()
    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    try:
        return ParsedJson(json.loads(candidate))
    except ValueError:
        pass

    start, end = candidate.find("{"), candidate.rfind("}")
    if start != -1 and end > start:
        try:
            return ParsedJson(json.loads(candidate[start:end + 1]))
        except ValueError as e:
            return MalformedResponse(f"invalid JSON: {e}", text)
    return MalformedResponse("no JSON object in response", text)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _get(raw: dict, name: str) -> Any:
    if name in raw:
        return raw[name]
    return raw.get(_camel(name))


def _as_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return str(value).lower()
    text = str(value).strip()
    return text or None


def _as_enum(enum_cls, value: Any):
    text = _as_str(value)
    if text is None:
        return None
    try:
        return enum_cls(text.upper())
    except ValueError:
        return None


def _map_appliance(raw: Any) -> Optional[ApplianceRecord]:
    if not isinstance(raw, dict):
        return None
    defects = _get(raw, "defects")
    return ApplianceRecord(
        type=_as_str(_get(raw, "type")),
        make=_as_str(_get(raw, "make")),
        model=_as_str(_get(raw, "model")),
        serial_number=_as_str(_get(raw, "serial_number")),
        location=_as_str(_get(raw, "location")),
        outcome=_as_enum(ApplianceOutcome, _get(raw, "outcome")),
        defects=[d for d in (_as_str(x) for x in defects) if d]
        if isinstance(defects, list) else [],
    )


def _map_defect(raw: Any) -> Optional[DefectRecord]:
    if not isinstance(raw, dict):
        return None
    return DefectRecord(
        code=_as_str(_get(raw, "code")),
        description=_as_str(_get(raw, "description")),
        location=_as_str(_get(raw, "location")),
        priority=_as_enum(DefectPriority, _get(raw, "priority")),
        remedial_action=_as_str(_get(raw, "remedial_action")),
    )


def map_to_extracted_data(
    raw: Any,
    default_certificate_type: str = "UNKNOWN",
) -> ExtractedCertificateData:
    """
    Map an untrusted provider payload to ExtractedCertificateData.

    Unknown or mistyped values become None; the outcome must be in the closed
    set; appliances and defects must be lists of objects. Never raises.
    """
    if not isinstance(raw, dict):
        if raw is not None:
            logger.debug(f"Expected a JSON object, got {type(raw).__name__}")
        return ExtractedCertificateData(certificate_type=default_certificate_type)

    appliances = _get(raw, "appliances")
    defects = _get(raw, "defects")
    additional = _get(raw, "additional_fields")

    additional_fields: dict[str, str] = {}
    if isinstance(additional, dict):
        for key, value in additional.items():
            if value is None:
                continue
            if isinstance(value, (dict, list)):
                additional_fields[str(key)] = json.dumps(value)
            else:
                additional_fields[str(key)] = str(value)

    certificate_type = _as_str(_get(raw, "certificate_type"))

    return ExtractedCertificateData(
        certificate_type=certificate_type.upper() if certificate_type else default_certificate_type,
        certificate_number=_as_str(_get(raw, "certificate_number")),
        property_address=_as_str(_get(raw, "property_address")),
        uprn=_as_str(_get(raw, "uprn")),
        inspection_date=_as_str(_get(raw, "inspection_date")),
        expiry_date=_as_str(_get(raw, "expiry_date")),
        next_inspection_date=_as_str(_get(raw, "next_inspection_date")),
        outcome=_as_enum(Outcome, _get(raw, "outcome")),
        engineer_name=_as_str(_get(raw, "engineer_name")),
        engineer_registration=_as_str(_get(raw, "engineer_registration")),
        contractor_name=_as_str(_get(raw, "contractor_name")),
        contractor_registration=_as_str(_get(raw, "contractor_registration")),
        appliances=[a for a in (_map_appliance(x) for x in appliances) if a]
        if isinstance(appliances, list) else [],
        defects=[d for d in (_map_defect(x) for x in defects) if d]
        if isinstance(defects, list) else [],
        additional_fields=additional_fields,
    )


def calculate_confidence(data: ExtractedCertificateData) -> float:
    """
    Completeness-based confidence over the load-bearing fields.

    Linear from 0.1 (nothing found) to 0.95 (everything found).
    """
    filled = sum([
        data.certificate_type != "UNKNOWN",
        data.certificate_number is not None,
        data.property_address is not None,
        data.inspection_date is not None,
        data.expiry_date is not None,
        data.outcome is not None,
        data.engineer_name is not None or data.contractor_name is not None,
    ])
    score = filled / LOAD_BEARING_FIELD_COUNT * 0.9 + CONFIDENCE_FLOOR
    return round(min(CONFIDENCE_CEILING, score), 4)


def blend_confidence(provider_confidence: float, data: ExtractedCertificateData) -> float:
    """Cap a provider's self-reported confidence by the completeness score."""
    return min(max(0.0, min(1.0, provider_confidence)), calculate_confidence(data))
