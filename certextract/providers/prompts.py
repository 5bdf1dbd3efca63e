"""Extraction prompts shared by the AI text and vision adapters."""

from typing import Optional

MAX_TEXT_CHARS = 50_000

SYSTEM_PROMPT = (
    "You extract structured data from UK property compliance certificates. "
    "Respond with a single JSON object and nothing else."
)

EXTRACTION_SCHEMA = """{
  "certificate_type": "GAS, EICR, EPC, FRA, PAT, LEGIONELLA, ASBESTOS, LIFT, EMLT, FIRE_ALARM, ...",
  "certificate_number": "Certificate or report reference number",
  "property_address": "Full property address",
  "uprn": "Unique Property Reference Number if present",
  "inspection_date": "YYYY-MM-DD",
  "expiry_date": "YYYY-MM-DD",
  "next_inspection_date": "YYYY-MM-DD",
  "outcome": "PASS, FAIL, SATISFACTORY, UNSATISFACTORY or N/A",
  "engineer_name": "Name of the engineer or inspector",
  "engineer_registration": "Registration number (Gas Safe, NICEIC, ...)",
  "contractor_name": "Company or contractor name",
  "contractor_registration": "Company registration number",
  "appliances": [
    {"type": "...", "make": "...", "model": "...", "serial_number": "...",
     "location": "...", "outcome": "PASS, FAIL or N/A", "defects": ["..."]}
  ],
  "defects": [
    {"code": "C1, C2, C3, FI, ID, AR, NCS", "description": "...", "location": "...",
     "priority": "IMMEDIATE, URGENT, ADVISORY or ROUTINE", "remedial_action": "..."}
  ],
  "additional_fields": {"name": "value"}
}"""

RULES = """Rules:
1. Dates in YYYY-MM-DD format (UK documents write day first)
2. Use null for anything that cannot be determined; never guess
3. Outcome is UNSATISFACTORY or FAIL when serious defects (C1, C2, ID, AR) are recorded
4. Gas Safe registration numbers are 7 digits
5. Return ONLY valid JSON"""


def _type_hint(certificate_type: Optional[str]) -> str:
    if certificate_type and certificate_type != "UNKNOWN":
        return f"The document appears to be a {certificate_type} certificate.\n\n"
    return ""


def build_text_prompt(text: str, certificate_type: Optional[str] = None) -> str:
    return (
        f"Extract the following information as JSON:\n\n{EXTRACTION_SCHEMA}\n\n{RULES}\n\n"
        f"{_type_hint(certificate_type)}"
        f"Document text:\n\n{text[:MAX_TEXT_CHARS]}"
    )


def build_vision_prompt(certificate_type: Optional[str] = None, page_count: int = 1) -> str:
    pages = f"The {page_count} images are consecutive pages of one document. " if page_count > 1 else ""
    return (
        f"{pages}Read the certificate in the image(s) and extract the following "
        f"information as JSON:\n\n{EXTRACTION_SCHEMA}\n\n{RULES}\n\n"
        f"{_type_hint(certificate_type)}"
    ).rstrip()
