"""
Runtime extraction settings.

Thresholds, budget and the AI switch are operator-tunable at runtime, so
they are read from a key/value settings store rather than the environment.
One immutable ExtractionSettings snapshot is taken per extraction run; the
SettingsCache re-reads the store at most once per TTL.

Degradation rules:
    - malformed JSON in a value: warning, built-in default kept
    - store unreachable: warning, last good snapshot (or defaults)
    - a value present but out of range: ExtractionSettingsError
"""

import json
import logging
import os
import re
import time
from typing import Any, Callable, Mapping, Optional, Protocol

from pydantic import BaseModel, Field

from ..resilience.errors import ExtractionSettingsError

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_THRESHOLDS: dict[str, float] = {
    "FRA": 0.70,
    "FIRE_RISK_ASSESSMENT": 0.70,
    "BSC": 0.70,
    "BUILDING_SAFETY": 0.70,
    "FRAEW": 0.70,
    "ASB": 0.75,
    "ASBESTOS": 0.75,
}

SETTINGS_KEYS = (
    "AI_EXTRACTION_ENABLED",
    "TIER1_CONFIDENCE_THRESHOLD",
    "TIER2_CONFIDENCE_THRESHOLD",
    "TIER3_CONFIDENCE_THRESHOLD",
    "MAX_COST_PER_DOCUMENT",
    "DOCUMENT_TYPE_THRESHOLDS",
    "CUSTOM_EXTRACTION_PATTERNS",
)


class ExtractionSettings(BaseModel):
    """Immutable settings snapshot for one extraction run."""

    model_config = {"frozen": True}

    ai_enabled: bool = False
    qr_threshold: float = 0.95
    tier1_threshold: float = 0.85
    tier2_threshold: float = 0.80
    tier3_threshold: float = 0.70
    max_cost_per_document: float = 0.05
    document_type_thresholds: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_DOCUMENT_THRESHOLDS)
    )
    # {certificate_type: {field_name: [regex, ...]}}
    custom_patterns: dict[str, dict[str, list[str]]] = Field(default_factory=dict)

    def patterns_for(self, certificate_type: str) -> dict[str, list[str]]:
        return self.custom_patterns.get(certificate_type.upper(), {})


class SettingsSource(Protocol):
    """A key/value settings store."""

    async def load(self) -> Mapping[str, Any]:
        ...


class StaticSettingsSource:
    """In-memory settings store."""

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self.values = dict(values or {})

    async def load(self) -> Mapping[str, Any]:
        return dict(self.values)


class EnvSettingsSource:
    """Reads the settings keys from environment variables."""

    async def load(self) -> Mapping[str, Any]:
        return {key: os.environ[key] for key in SETTINGS_KEYS if key in os.environ}


def _parse_bool(key: str, raw: Any, default: bool) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off"):
        return False
    logger.warning(f"Unrecognised boolean for {key}: {raw!r}, using default {default}")
    return default


def _parse_float(key: str, raw: Any, default: float) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Non-numeric value for {key}: {raw!r}, using default {default}")
        return default


def _check_unit_range(key: str, value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ExtractionSettingsError(f"{key} must be between 0 and 1, got {value}")
    return value


def _parse_json(key: str, raw: Any) -> Optional[Any]:
    if isinstance(raw, (dict, list)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse {key} as JSON, using defaults: {e}")
        return None


def _parse_document_thresholds(raw: Any) -> dict[str, float]:
    thresholds = dict(DEFAULT_DOCUMENT_THRESHOLDS)
    parsed = _parse_json("DOCUMENT_TYPE_THRESHOLDS", raw)
    if parsed is None:
        return thresholds
    if not isinstance(parsed, dict):
        logger.warning("DOCUMENT_TYPE_THRESHOLDS is not a JSON object, using defaults")
        return thresholds
    for doc_type, value in parsed.items():
        key = f"DOCUMENT_TYPE_THRESHOLDS[{doc_type}]"
        thresholds[str(doc_type).upper()] = _check_unit_range(
            key, _parse_float(key, value, thresholds.get(str(doc_type).upper(), 0.0))
        )
    return thresholds


def _parse_custom_patterns(raw: Any) -> dict[str, dict[str, list[str]]]:
    parsed = _parse_json("CUSTOM_EXTRACTION_PATTERNS", raw)
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        logger.warning("CUSTOM_EXTRACTION_PATTERNS is not a JSON object, ignoring")
        return {}

    patterns: dict[str, dict[str, list[str]]] = {}
    for doc_type, fields in parsed.items():
        if not isinstance(fields, dict):
            logger.warning(f"Custom patterns for {doc_type} are not an object, ignoring")
            continue
        type_patterns: dict[str, list[str]] = {}
        for field_name, regexes in fields.items():
            if isinstance(regexes, str):
                regexes = [regexes]
            if not isinstance(regexes, list):
                continue
            valid = []
            for regex in regexes:
                try:
                    re.compile(str(regex))
                except re.error as e:
                    logger.warning(f"Invalid custom pattern for {doc_type}.{field_name}: {e}")
                    continue
                valid.append(str(regex))
            if valid:
                type_patterns[str(field_name)] = valid
        if type_patterns:
            patterns[str(doc_type).upper()] = type_patterns
    return patterns


def parse_extraction_settings(values: Mapping[str, Any]) -> ExtractionSettings:
    """
    Build a settings snapshot from raw store values.

    Missing keys take defaults. Raises ExtractionSettingsError for values that
    parse but fall outside their valid range.
    """
    defaults = ExtractionSettings()
    kwargs: dict[str, Any] = {}

    if "AI_EXTRACTION_ENABLED" in values:
        kwargs["ai_enabled"] = _parse_bool(
            "AI_EXTRACTION_ENABLED", values["AI_EXTRACTION_ENABLED"], defaults.ai_enabled
        )

    for key, attr in (
        ("TIER1_CONFIDENCE_THRESHOLD", "tier1_threshold"),
        ("TIER2_CONFIDENCE_THRESHOLD", "tier2_threshold"),
        ("TIER3_CONFIDENCE_THRESHOLD", "tier3_threshold"),
    ):
        if key in values:
            kwargs[attr] = _check_unit_range(
                key, _parse_float(key, values[key], getattr(defaults, attr))
            )

    if "MAX_COST_PER_DOCUMENT" in values:
        max_cost = _parse_float(
            "MAX_COST_PER_DOCUMENT",
            values["MAX_COST_PER_DOCUMENT"],
            defaults.max_cost_per_document,
        )
        if max_cost < 0:
            raise ExtractionSettingsError(
                f"MAX_COST_PER_DOCUMENT must be non-negative, got {max_cost}"
            )
        kwargs["max_cost_per_document"] = max_cost

    if "DOCUMENT_TYPE_THRESHOLDS" in values:
        kwargs["document_type_thresholds"] = _parse_document_thresholds(
            values["DOCUMENT_TYPE_THRESHOLDS"]
        )

    if "CUSTOM_EXTRACTION_PATTERNS" in values:
        kwargs["custom_patterns"] = _parse_custom_patterns(
            values["CUSTOM_EXTRACTION_PATTERNS"]
        )

    return ExtractionSettings(**kwargs)


class SettingsCache:
    """Caches the parsed settings snapshot for a TTL."""

    def __init__(
        self,
        source: SettingsSource,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[ExtractionSettings] = None
        self._loaded_at: Optional[float] = None

    def invalidate(self) -> None:
        self._loaded_at = None

    async def get(self) -> ExtractionSettings:
        """Return the current snapshot, reloading from the source once stale."""
        now = self._clock()
        if (
            self._snapshot is not None
            and self._loaded_at is not None
            and now - self._loaded_at < self.ttl_seconds
        ):
            return self._snapshot

        try:
            values = await self.source.load()
        except Exception as e:
            fallback = self._snapshot or ExtractionSettings()
            logger.warning(
                f"Settings store unavailable, using "
                f"{'last snapshot' if self._snapshot else 'defaults'}: {e}"
            )
            # The fallback holds for a full TTL before the store is tried again
            self._snapshot = fallback
            self._loaded_at = now
            return fallback

        snapshot = parse_extraction_settings(values)
        self._snapshot = snapshot
        self._loaded_at = now
        return snapshot
