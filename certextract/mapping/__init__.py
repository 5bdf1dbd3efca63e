"""Provider payload mapping and confidence scoring."""

from .confidence import (
    JsonParseResult,
    MalformedResponse,
    ParsedJson,
    blend_confidence,
    calculate_confidence,
    map_to_extracted_data,
    parse_json_response,
)

__all__ = [
    "JsonParseResult",
    "MalformedResponse",
    "ParsedJson",
    "blend_confidence",
    "calculate_confidence",
    "map_to_extracted_data",
    "parse_json_response",
]
