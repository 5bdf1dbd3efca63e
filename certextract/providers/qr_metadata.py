"""
QR code and embedded metadata extraction (tier-0).

Many gas and electrical certificates carry a verification QR code linking to
the registering body. Decoding it is free and, when it resolves to a known
provider, identifies the certificate with high confidence.
"""

import asyncio
import io
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

import cv2
import numpy as np
from PIL import ExifTags, Image, UnidentifiedImageError

from ..schemas.certificate import ExtractedCertificateData
from ..schemas.tiers import Tier
from .base import BaseExtractionProvider, ProviderInput, ProviderResult
from .rendering import render_pdf_pages

logger = logging.getLogger(__name__)

QR_CONFIDENCE = 0.95
MAX_QR_PAGES = 3

# (provider, pattern); group 1 is the verification code when present
_PROVIDER_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("gas-safe", re.compile(r"gassaferegister\.co\.uk/check/(\w+)", re.IGNORECASE)),
    ("gas-tag", re.compile(r"gastag\.co\.uk/verify/([^\s?#]+)", re.IGNORECASE)),
    ("niceic", re.compile(r"niceic\.com/verify/(\w+)", re.IGNORECASE)),
    ("corgi", re.compile(r"corgi\S*\.co\.uk\S*verify", re.IGNORECASE)),
]

_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)

_EXIF_IFD = 0x8769
_GPS_IFD = 0x8825


@dataclass
class QRCodeData:
    provider: str
    raw_data: str
    url: Optional[str] = None
    verification_code: Optional[str] = None


@dataclass
class ImageMetadata:
    date_taken: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    device: Optional[str] = None
    software: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(asdict(self).values())


@dataclass
class QRMetadataResult:
    qr_codes: list[QRCodeData] = field(default_factory=list)
    metadata: Optional[ImageMetadata] = None

    @property
    def verification_codes(self) -> list[QRCodeData]:
        return [qr for qr in self.qr_codes if qr.provider != "other" or qr.verification_code]

    @property
    def has_verification_data(self) -> bool:
        return bool(self.verification_codes)

    def extracted_fields(self) -> dict[str, str]:
        """Flat string fields suitable for additional_fields."""
        fields: dict[str, str] = {}
        for qr in self.qr_codes:
            if qr.provider == "gas-safe" and qr.verification_code:
                fields.setdefault("gas_safe_id", qr.verification_code)
            elif qr.provider == "gas-tag" and qr.verification_code:
                fields.setdefault("gas_tag_ref", qr.verification_code)
            elif qr.provider == "niceic" and qr.verification_code:
                fields.setdefault("niceic_ref", qr.verification_code)
            if qr.url:
                fields.setdefault("verification_url", qr.url)
        if self.metadata:
            if self.metadata.date_taken:
                fields["photo_date"] = self.metadata.date_taken
            if self.metadata.latitude is not None and self.metadata.longitude is not None:
                fields["latitude"] = f"{self.metadata.latitude:.6f}"
                fields["longitude"] = f"{self.metadata.longitude:.6f}"
            if self.metadata.software:
                fields["generating_software"] = self.metadata.software
            if self.metadata.device:
                fields["device"] = self.metadata.device
        return fields

    def to_dict(self) -> dict[str, Any]:
        return {
            "qr_codes": [asdict(qr) for qr in self.qr_codes],
            "metadata": asdict(self.metadata) if self.metadata else None,
        }


def parse_qr_payload(raw: str) -> QRCodeData:
    """Identify the registering body and verification code in a QR payload."""
    text = raw.strip()
    url_match = _URL_RE.search(text)
    url = url_match.group(0) if url_match else None

    for provider, pattern in _PROVIDER_PATTERNS:
        match = pattern.search(text)
        if match:
            code = match.group(1) if match.groups() else None
            return QRCodeData(provider=provider, raw_data=text, url=url, verification_code=code)

    return QRCodeData(provider="other", raw_data=text, url=url)


def decode_qr_codes(image: np.ndarray) -> list[str]:
    """Decode every QR code in a BGR or grayscale image."""
    detector = cv2.QRCodeDetector()
    try:
        found, decoded, _, _ = detector.detectAndDecodeMulti(image)
    except cv2.error as e:
        logger.debug(f"Multi QR detection failed: {e}")
        found, decoded = False, ()
    payloads = [text for text in decoded if text] if found else []
    if not payloads:
        try:
            text, _, _ = detector.detectAndDecode(image)
        except cv2.error as e:
            logger.debug(f"QR detection failed: {e}")
            text = ""
        if text:
            payloads.append(text)
    return payloads


def _pil_to_cv(image: Image.Image) -> np.ndarray:
    return cv2.cvtColor(np.array(image.convert("RGB")), cv2.COLOR_RGB2BGR)


def _gps_to_degrees(values: Any, ref: Optional[str]) -> Optional[float]:
    try:
        degrees, minutes, seconds = (float(v) for v in values)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    decimal = degrees + minutes / 60 + seconds / 3600
    if ref in ("S", "W"):
        decimal = -decimal
    return round(decimal, 6)


def _exif_date(value: Optional[str]) -> Optional[str]:
    # EXIF dates are "YYYY:MM:DD HH:MM:SS"
    if not value:
        return None
    match = re.match(r"(\d{4}):(\d{2}):(\d{2})", str(value))
    return f"{match.group(1)}-{match.group(2)}-{match.group(3)}" if match else None


def extract_image_metadata(image: Image.Image) -> ImageMetadata:
    exif = image.getexif()
    exif_ifd = exif.get_ifd(_EXIF_IFD)
    gps_ifd = exif.get_ifd(_GPS_IFD)

    make = exif.get(ExifTags.Base.Make)
    model = exif.get(ExifTags.Base.Model)
    device = " ".join(str(part).strip() for part in (make, model) if part) or None

    latitude = longitude = None
    if gps_ifd:
        latitude = _gps_to_degrees(
            gps_ifd.get(ExifTags.GPS.GPSLatitude), gps_ifd.get(ExifTags.GPS.GPSLatitudeRef)
        )
        longitude = _gps_to_degrees(
            gps_ifd.get(ExifTags.GPS.GPSLongitude), gps_ifd.get(ExifTags.GPS.GPSLongitudeRef)
        )

    software = exif.get(ExifTags.Base.Software)
    return ImageMetadata(
        date_taken=_exif_date(
            exif_ifd.get(ExifTags.Base.DateTimeOriginal) or exif.get(ExifTags.Base.DateTime)
        ),
        latitude=latitude,
        longitude=longitude,
        device=device,
        software=str(software).strip() if software else None,
    )


def scan_document(content: bytes, is_pdf: bool) -> QRMetadataResult:
    """Decode QR codes (and EXIF metadata for images) from a document."""
    result = QRMetadataResult()
    if is_pdf:
        for page in render_pdf_pages(content, max_pages=MAX_QR_PAGES):
            image = cv2.imdecode(np.frombuffer(page, dtype=np.uint8), cv2.IMREAD_COLOR)
            if image is not None:
                result.qr_codes.extend(parse_qr_payload(p) for p in decode_qr_codes(image))
        return result

    with Image.open(io.BytesIO(content)) as image:
        metadata = extract_image_metadata(image)
        result.metadata = None if metadata.is_empty() else metadata
        result.qr_codes.extend(parse_qr_payload(p) for p in decode_qr_codes(_pil_to_cv(image)))
    return result


def to_extracted_data(scan: QRMetadataResult, certificate_type: str) -> ExtractedCertificateData:
    fields = scan.extracted_fields()
    verification = scan.verification_codes[0] if scan.verification_codes else None
    return ExtractedCertificateData(
        certificate_type=certificate_type,
        certificate_number=verification.verification_code if verification else None,
        inspection_date=fields.get("photo_date"),
        engineer_registration=fields.get("gas_safe_id"),
        additional_fields=fields,
    )


class QRMetadataProvider(BaseExtractionProvider):
    """Verification QR codes and image metadata. Local and always configured."""

    name = "qr-metadata"
    tier = Tier.QR_METADATA

    async def extract(self, provider_input: ProviderInput) -> ProviderResult:
        is_pdf = bool(provider_input.document_format and provider_input.document_format.is_pdf)
        try:
            scan = await asyncio.to_thread(scan_document, provider_input.content, is_pdf)
        except (UnidentifiedImageError, OSError, RuntimeError, ValueError) as e:
            return ProviderResult.failure(f"could not scan document: {e}")

        if not scan.has_verification_data:
            return ProviderResult.failure(
                "no verification QR code found", raw_response=scan.to_dict()
            )

        logger.info(
            f"Found {len(scan.verification_codes)} verification QR code(s): "
            f"{', '.join(qr.provider for qr in scan.verification_codes)}"
        )
        return ProviderResult(
            success=True,
            data=to_extracted_data(scan, provider_input.certificate_type),
            confidence=QR_CONFIDENCE,
            raw_response=scan.to_dict(),
        )
