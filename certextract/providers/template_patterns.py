"""
Regex template extraction.

Two local, zero-cost tiers share this module:
    - TemplateProvider (tier-1): built-in pattern sets for GAS, EICR, EPC, FRA
    - CustomPatternProvider (tier-0.5): operator-supplied patterns per
      certificate type, read from the runtime settings

Scoring: matched / expected fields, halved when a required field is missing,
plus 0.1 when defect codes are found (capped at 1).
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from ..schemas.certificate import (
    ApplianceOutcome,
    ApplianceRecord,
    DefectPriority,
    DefectRecord,
    ExtractedCertificateData,
    Outcome,
)
from ..schemas.tiers import Tier
from .base import BaseExtractionProvider, ProviderInput, ProviderResult

logger = logging.getLogger(__name__)

_MONTHS = {
    "jan": "01", "feb": "02", "mar": "03", "apr": "04", "may": "05", "jun": "06",
    "jul": "07", "aug": "08", "sep": "09", "oct": "10", "nov": "11", "dec": "12",
}

_DATE_PATTERNS = [
    re.compile(r"(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})"),
    re.compile(r"(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})"),
    re.compile(
        r"(\d{1,2})\s+(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\s+(\d{4})",
        re.IGNORECASE,
    ),
]


def normalize_date(value: str) -> Optional[str]:
    """Normalise UK-style dates (day first) to YYYY-MM-DD; None unless a real calendar date."""
    for index, pattern in enumerate(_DATE_PATTERNS):
        match = pattern.search(value)
        if not match:
            continue
        if index == 0:
            day, month, year = match.groups()
        elif index == 1:
            year, month, day = match.groups()
        else:
            day, month_name, year = match.groups()
            month = _MONTHS[month_name.lower()[:3]]
        try:
            return date(int(year), int(month), int(day)).isoformat()
        except ValueError:
            continue
    return None


def _gas_outcome(value: str) -> str:
    upper = value.upper()
    if "UNSATISFACTORY" in upper or "FAIL" in upper:
        return "FAIL"
    return "PASS"


def _eicr_outcome(value: str) -> str:
    return "UNSATISFACTORY" if "UNSATISFACTORY" in value.upper() else "SATISFACTORY"


@dataclass
class FieldPattern:
    """Patterns for one field; the first pattern with a capture wins."""

    field: str
    patterns: list[re.Pattern]
    transform: Optional[Callable[[str], Optional[str]]] = None
    required: bool = False


def _p(*patterns: str) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


DATE_VALUE = r"([\d/\-.]+|\d{1,2}\s+[A-Za-z]{3,9}\s+\d{4})"

GAS_PATTERNS = [
    FieldPattern(
        "certificate_number",
        _p(r"certificate\s*(?:no|number|ref)\.?[:\s]*([A-Z0-9\-]+)", r"ref(?:erence)?[:\s]*([A-Z0-9\-]+)"),
        required=True,
    ),
    FieldPattern(
        "engineer_registration",
        _p(
            r"gas\s*safe\s*(?:reg(?:istration)?|id|no|number)?\.?\s*(?:no|number)?[:\s]*(\d{6,7})",
            r"registration\s*(?:no|number)?[:\s]*(\d{6,7})",
        ),
        required=True,
    ),
    FieldPattern(
        "engineer_name",
        _p(r"engineer(?:\s*name)?[:\s]*([A-Za-z][A-Za-z .'\-]+?)\s*(?:gas|$|\n)", r"technician[:\s]*([A-Za-z][A-Za-z .'\-]+?)\s*(?:gas|$|\n)"),
    ),
    FieldPattern(
        "inspection_date",
        _p(
            rf"inspection\s*date[:\s]*{DATE_VALUE}",
            rf"date\s*of\s*inspection[:\s]*{DATE_VALUE}",
        ),
        transform=normalize_date,
        required=True,
    ),
    FieldPattern(
        "expiry_date",
        _p(
            rf"expiry\s*date[:\s]*{DATE_VALUE}",
            rf"next\s*inspection\s*(?:due\s*)?(?:by\s*)?(?:date)?[:\s]*{DATE_VALUE}",
            rf"valid\s*until[:\s]*{DATE_VALUE}",
        ),
        transform=normalize_date,
    ),
    FieldPattern(
        "property_address",
        _p(r"property\s*address[:\s]*([^\n]+)", r"address[:\s]*([^\n]+)"),
    ),
    FieldPattern(
        "outcome",
        _p(
            r"overall\s*(?:result|outcome)[:\s]*(satisfactory|unsatisfactory|pass|fail)",
            r"certificate\s*(?:is\s*)?(satisfactory|unsatisfactory)",
        ),
        transform=_gas_outcome,
    ),
]

EICR_PATTERNS = [
    FieldPattern(
        "certificate_number",
        _p(
            r"certificate\s*(?:no|number|ref)\.?[:\s]*([A-Z0-9\-]+)",
            r"report\s*(?:ref|reference|no|number)\.?[:\s]*([A-Z0-9\-]+)",
        ),
        required=True,
    ),
    FieldPattern(
        "engineer_registration",
        _p(
            r"niceic\s*(?:reg(?:istration)?|no|number)?[:\s]*(\d+)",
            r"napit\s*(?:reg(?:istration)?|no|number)?[:\s]*(\d+)",
            r"elecsa\s*(?:reg(?:istration)?|no|number)?[:\s]*(\d+)",
            r"registration\s*(?:no|number)?[:\s]*(\d+)",
        ),
    ),
    FieldPattern(
        "engineer_name",
        _p(r"inspector[:\s]*([A-Za-z][A-Za-z .'\-]+?)\s*(?:niceic|$|\n)", r"electrician[:\s]*([A-Za-z][A-Za-z .'\-]+?)\s*(?:reg|$|\n)"),
    ),
    FieldPattern(
        "inspection_date",
        _p(
            rf"inspection\s*date[:\s]*{DATE_VALUE}",
            rf"date\s*of\s*(?:inspection|report)[:\s]*{DATE_VALUE}",
        ),
        transform=normalize_date,
        required=True,
    ),
    FieldPattern(
        "expiry_date",
        _p(
            rf"next\s*inspection\s*(?:due\s*)?(?:by\s*)?(?:date)?[:\s]*{DATE_VALUE}",
            rf"recommend(?:ed)?\s*(?:re-?)?inspection[:\s]*{DATE_VALUE}",
        ),
        transform=normalize_date,
    ),
    FieldPattern(
        "outcome",
        _p(
            r"overall\s*(?:condition|assessment)[:\s]*(satisfactory|unsatisfactory)",
            r"the\s*installation\s*is[:\s]*(satisfactory|unsatisfactory)",
        ),
        transform=_eicr_outcome,
    ),
]

EPC_PATTERNS = [
    FieldPattern(
        "certificate_number",
        _p(r"certificate\s*(?:reference|number)[:\s]*([A-Z0-9\-]+)", r"RRN[:\s]*([A-Z0-9\-]+)"),
        required=True,
    ),
    FieldPattern(
        "inspection_date",
        _p(rf"date\s*of\s*assessment[:\s]*{DATE_VALUE}", rf"assessment\s*date[:\s]*{DATE_VALUE}"),
        transform=normalize_date,
    ),
    FieldPattern(
        "expiry_date",
        _p(rf"valid\s*until[:\s]*{DATE_VALUE}", rf"expiry\s*date[:\s]*{DATE_VALUE}"),
        transform=normalize_date,
    ),
    # Letter ratings are not certificate outcomes; kept as an additional field.
    FieldPattern(
        "energy_rating",
        _p(r"energy\s*(?:efficiency\s*)?rating[:\s]*([A-G])\b", r"current\s*rating[:\s]*([A-G])\b"),
        transform=str.upper,
    ),
]

FRA_PATTERNS = [
    FieldPattern(
        "certificate_number",
        _p(
            r"assessment\s*(?:ref|reference|number)[:\s]*([A-Z0-9\-]+)",
            r"report\s*(?:ref|reference|number)[:\s]*([A-Z0-9\-]+)",
        ),
    ),
    FieldPattern(
        "inspection_date",
        _p(rf"date\s*of\s*assessment[:\s]*{DATE_VALUE}", rf"assessment\s*date[:\s]*{DATE_VALUE}"),
        transform=normalize_date,
        required=True,
    ),
    FieldPattern(
        "expiry_date",
        _p(rf"review\s*date[:\s]*{DATE_VALUE}", rf"next\s*review[:\s]*{DATE_VALUE}"),
        transform=normalize_date,
    ),
    FieldPattern(
        "risk_level",
        _p(
            r"overall\s*risk\s*(?:rating|level)?[:\s]*(trivial|tolerable|moderate|substantial|intolerable)",
            r"risk\s*rating[:\s]*(low|medium|high|very\s*high)",
        ),
        transform=str.upper,
    ),
]

CERTIFICATE_PATTERNS: dict[str, list[FieldPattern]] = {
    "GAS": GAS_PATTERNS,
    "EICR": EICR_PATTERNS,
    "EPC": EPC_PATTERNS,
    "FRA": FRA_PATTERNS,
}

DEFECT_CODE_PATTERNS: dict[str, list[re.Pattern]] = {
    "C1": [re.compile(r"\bC1\b"), re.compile(r"code\s*1\b", re.I), re.compile(r"danger\s*present", re.I)],
    "C2": [re.compile(r"\bC2\b"), re.compile(r"code\s*2\b", re.I), re.compile(r"potentially\s*dangerous", re.I)],
    "C3": [re.compile(r"\bC3\b"), re.compile(r"code\s*3\b", re.I), re.compile(r"improvement\s*recommended", re.I)],
    "FI": [re.compile(r"\bFI\b"), re.compile(r"further\s*investigation", re.I)],
    "AR": [re.compile(r"\bAR\b"), re.compile(r"at\s*risk", re.I)],
    "ID": [re.compile(r"\bID\b"), re.compile(r"immediately\s*dangerous", re.I)],
    "NCS": [re.compile(r"\bNCS\b"), re.compile(r"not\s*to\s*current\s*standard", re.I)],
}

DEFECT_PRIORITIES = {
    "C1": DefectPriority.IMMEDIATE,
    "ID": DefectPriority.IMMEDIATE,
    "C2": DefectPriority.URGENT,
    "AR": DefectPriority.URGENT,
    "FI": DefectPriority.URGENT,
    "C3": DefectPriority.ADVISORY,
    "NCS": DefectPriority.ADVISORY,
}

_APPLIANCE_RE = re.compile(r"^\s*appliance\s*\d*\s*[:\-]\s*([^\n]+)", re.IGNORECASE | re.MULTILINE)
_APPLIANCE_OUTCOME_RE = re.compile(r"\b(pass|fail|satisfactory|unsatisfactory)\b", re.IGNORECASE)


def extract_defects(text: str) -> list[DefectRecord]:
    """One defect per (line, code) pair where a defect code or phrase appears."""
    defects = []
    for line in text.splitlines():
        for code, patterns in DEFECT_CODE_PATTERNS.items():
            if any(pattern.search(line) for pattern in patterns):
                defects.append(DefectRecord(
                    code=code,
                    description=line.strip(),
                    priority=DEFECT_PRIORITIES[code],
                ))
    return defects


def extract_appliances(text: str, certificate_type: str) -> list[ApplianceRecord]:
    """Gas appliances listed as 'Appliance N: ...' lines."""
    if certificate_type != "GAS":
        return []

    appliances = []
    for match in _APPLIANCE_RE.finditer(text):
        line = match.group(1)
        outcome_match = _APPLIANCE_OUTCOME_RE.search(line)
        outcome = None
        if outcome_match:
            word = outcome_match.group(1).upper()
            outcome = (
                ApplianceOutcome.FAIL
                if word in ("FAIL", "UNSATISFACTORY")
                else ApplianceOutcome.PASS
            )
        appliances.append(ApplianceRecord(
            type=_APPLIANCE_OUTCOME_RE.sub("", line).strip(" -,:") or "Gas Appliance",
            outcome=outcome,
        ))
    return appliances


@dataclass
class TemplateMatch:
    data: ExtractedCertificateData
    confidence: float
    matched_fields: int
    expected_fields: int
    missing_required: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.matched_fields >= min(2, self.expected_fields) and self.matched_fields > 0


_DATA_FIELDS = set(ExtractedCertificateData.model_fields) - {
    "certificate_type", "appliances", "defects", "additional_fields",
}


def apply_patterns(
    text: str,
    certificate_type: str,
    patterns: list[FieldPattern],
) -> TemplateMatch:
    """Apply a pattern set to text and score the match."""
    values: dict[str, str] = {}
    missing_required = []

    for extractor in patterns:
        for pattern in extractor.patterns:
            match = pattern.search(text)
            if not match:
                continue
            value = (match.group(1) if match.groups() else match.group(0)) or ""
            value = value.strip()
            if extractor.transform and value:
                value = extractor.transform(value) or value
            if value:
                values[extractor.field] = value
                break
        if extractor.required and extractor.field not in values:
            missing_required.append(extractor.field)

    defects = extract_defects(text)
    outcome = values.pop("outcome", None)
    data = ExtractedCertificateData(
        certificate_type=certificate_type,
        outcome=Outcome(outcome) if outcome in {o.value for o in Outcome} else None,
        appliances=extract_appliances(text, certificate_type),
        defects=defects,
        additional_fields={k: v for k, v in values.items() if k not in _DATA_FIELDS},
        **{k: v for k, v in values.items() if k in _DATA_FIELDS},
    )

    matched = len(values) + (1 if outcome else 0)
    expected = len(patterns)
    confidence = matched / expected if expected else 0.0
    if missing_required:
        confidence *= 0.5
    if defects:
        confidence = min(confidence + 0.1, 1.0)

    return TemplateMatch(
        data=data,
        confidence=round(confidence, 4),
        matched_fields=matched,
        expected_fields=expected,
        missing_required=missing_required,
    )


def extract_with_template(text: str, certificate_type: str) -> Optional[TemplateMatch]:
    """Built-in template match, or None when no template exists for the type."""
    patterns = CERTIFICATE_PATTERNS.get(certificate_type.upper())
    if patterns is None:
        return None
    return apply_patterns(text, certificate_type.upper(), patterns)


def compile_custom_patterns(config: dict[str, list[str]]) -> list[FieldPattern]:
    compiled = []
    for field_name, regexes in config.items():
        transform = normalize_date if field_name.endswith("_date") else None
        compiled.append(FieldPattern(
            field_name,
            [re.compile(regex, re.IGNORECASE | re.MULTILINE) for regex in regexes],
            transform=transform,
        ))
    return compiled


def _result_from_match(match: TemplateMatch, provider: str) -> ProviderResult:
    raw = {
        "matched_fields": match.matched_fields,
        "expected_fields": match.expected_fields,
        "missing_required": match.missing_required,
    }
    if not match.success:
        return ProviderResult.failure(
            f"{provider}: matched {match.matched_fields}/{match.expected_fields} fields",
            raw_response=raw,
        )
    return ProviderResult(
        success=True,
        data=match.data,
        confidence=match.confidence,
        raw_response=raw,
    )


class TemplateProvider(BaseExtractionProvider):
    """Built-in regex templates for common certificate types."""

    name = "template"
    tier = Tier.TEMPLATE

    async def extract(self, provider_input: ProviderInput) -> ProviderResult:
        if not provider_input.text:
            return ProviderResult.failure("no text layer")
        match = extract_with_template(provider_input.text, provider_input.certificate_type)
        if match is None:
            return ProviderResult.failure(
                f"no template for {provider_input.certificate_type}"
            )
        logger.debug(
            f"Template {provider_input.certificate_type}: "
            f"{match.matched_fields}/{match.expected_fields} fields"
        )
        return _result_from_match(match, self.name)


class CustomPatternProvider(BaseExtractionProvider):
    """Operator-defined regex patterns for one certificate type."""

    name = "custom-patterns"
    tier = Tier.CUSTOM_PATTERNS

    async def extract(self, provider_input: ProviderInput) -> ProviderResult:
        if not provider_input.text:
            return ProviderResult.failure("no text layer")
        if not provider_input.custom_patterns:
            return ProviderResult.failure(
                f"no custom patterns for {provider_input.certificate_type}"
            )
        try:
            patterns = compile_custom_patterns(provider_input.custom_patterns)
        except re.error as e:
            return ProviderResult.failure(f"invalid custom pattern: {e}")
        match = apply_patterns(
            provider_input.text, provider_input.certificate_type.upper(), patterns
        )
        return _result_from_match(match, self.name)
