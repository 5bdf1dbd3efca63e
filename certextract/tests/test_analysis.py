"""Tests for document format analysis."""

import io

from PIL import Image

from certextract.analysis import (
    analyse_document,
    classify_document,
    detect_certificate_type,
    detect_format,
    score_text,
)
from certextract.schemas import DocumentClassification, DocumentFormat


GAS_TEXT = """LANDLORD GAS SAFETY RECORD
Certificate No: GS-12345
Gas Safe Registration: 1234567
Engineer: John Smith
Inspection Date: 15/03/2024
Expiry Date: 14/03/2025
Property Address: 1 High Street, London
Overall Result: PASS
Appliance 1: Boiler Kitchen PASS
"""


def _png(size=(64, 64)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, "white").save(buffer, format="PNG")
    return buffer.getvalue()


class TestDetectFormat:
    """Tests for format detection."""

    def test_mime_type(self):
        """Test formats from mime types."""
        assert detect_format("application/pdf") is DocumentFormat.PDF_NATIVE
        assert detect_format("image/jpeg") is DocumentFormat.IMAGE
        assert detect_format("text/csv; charset=utf-8") is DocumentFormat.CSV

    def test_extension_fallback(self):
        """Test generic mime types fall back to the file extension."""
        assert detect_format("application/octet-stream", "scan.PNG") is DocumentFormat.IMAGE
        assert detect_format(None, "report.eml") is DocumentFormat.EMAIL

    def test_unknown_defaults_to_pdf(self):
        """Test unknown documents are treated as PDFs."""
        assert detect_format("application/octet-stream", "blob") is DocumentFormat.PDF_NATIVE


class TestScoreText:
    """Tests for text quality scoring."""

    def test_empty_text(self):
        """Test empty text scores zero."""
        assert score_text("", 1) == (0.0, 0.0)

    def test_dense_text_capped(self):
        """Test quality is capped at one."""
        text = "certificate " * 400
        avg, quality = score_text(text, 1)
        assert avg == len(text)
        assert quality == 1.0

    def test_pages_dilute_quality(self):
        """Test the same text over more pages scores lower."""
        text = "inspection record " * 60
        _, one_page = score_text(text, 1)
        _, four_pages = score_text(text, 4)
        assert four_pages < one_page


class TestCertificateTypes:
    """Tests for keyword type detection and classification."""

    def test_titles(self):
        """Test explicit certificate titles."""
        assert detect_certificate_type(GAS_TEXT) == "GAS"
        assert detect_certificate_type("Electrical Installation Condition Report") == "EICR"
        assert detect_certificate_type("Fire Risk Assessment for Block A") == "FRA"
        assert detect_certificate_type("Asbestos management survey") == "ASBESTOS"

    def test_weak_signals(self):
        """Test combined keywords when no title matches."""
        assert detect_certificate_type("Gas Safe engineer checked 2 appliances") == "GAS"
        assert detect_certificate_type("Tested to BS 7671, electrical supply") == "EICR"
        assert detect_certificate_type("Oil fired heating service") == "OIL"

    def test_unknown(self):
        """Test unrelated text is UNKNOWN."""
        assert detect_certificate_type("") == "UNKNOWN"
        assert detect_certificate_type("Quarterly newsletter") == "UNKNOWN"

    def test_classification(self):
        """Test classification from type and text."""
        assert classify_document("", "GAS") is DocumentClassification.STRUCTURED_CERTIFICATE
        assert classify_document("", "FRA") is DocumentClassification.COMPLEX_DOCUMENT
        assert (
            classify_document("Handwritten notes", "UNKNOWN")
            is DocumentClassification.HANDWRITTEN_CONTENT
        )


class TestAnalyseDocument:
    """Tests for analyse_document."""

    def test_plain_text(self):
        """Test a text document is scored and typed."""
        analysis = analyse_document(GAS_TEXT.encode(), "text/plain", "cert.txt")
        assert analysis.format is DocumentFormat.TXT
        assert analysis.detected_certificate_type == "GAS"
        assert analysis.classification is DocumentClassification.STRUCTURED_CERTIFICATE
        assert analysis.has_text
        assert analysis.has_text_layer
        assert not analysis.is_scanned
        assert 0.0 < analysis.text_quality <= 1.0

    def test_html_tags_stripped(self):
        """Test HTML is reduced to text."""
        html = b"<html><body><h1>Fire Risk Assessment</h1><p>Block A</p></body></html>"
        analysis = analyse_document(html, "text/html")
        assert "<h1>" not in analysis.text_content
        assert analysis.detected_certificate_type == "FRA"

    def test_image(self):
        """Test images are scanned with no text layer."""
        analysis = analyse_document(_png(), "image/png", "scan.png")
        assert analysis.format is DocumentFormat.IMAGE
        assert analysis.is_scanned
        assert not analysis.has_text_layer
        assert analysis.page_count == 1
        assert not analysis.is_unreadable

    def test_corrupt_pdf_unreadable(self):
        """Test a corrupt PDF is reported unreadable rather than raising."""
        analysis = analyse_document(b"%PDF-1.4 this is not really a pdf", "application/pdf")
        assert analysis.is_unreadable
        assert analysis.classification is DocumentClassification.UNREADABLE
        assert analysis.text_quality == 0.0
        assert analysis.is_scanned

    def test_corrupt_image_unreadable(self):
        """Test undecodable image bytes are unreadable."""
        analysis = analyse_document(b"\x00\x01garbage", "image/jpeg")
        assert analysis.is_unreadable
        assert analysis.format is DocumentFormat.IMAGE

    def test_decompression_bomb_unreadable(self, oversized_png):
        """Test an image Pillow refuses to open is unreadable rather than raising."""
        analysis = analyse_document(oversized_png, "image/png")
        assert analysis.is_unreadable
        assert analysis.format is DocumentFormat.IMAGE

    def test_bad_checksum_unreadable(self, bad_crc_png):
        """Test a PNG failing verification is unreadable rather than raising."""
        analysis = analyse_document(bad_crc_png, "image/png")
        assert analysis.is_unreadable
        assert analysis.text_quality == 0.0

    def test_empty_content_unreadable(self):
        """Test empty content is unreadable."""
        assert analyse_document(b"", "text/plain").is_unreadable

    def test_office_document_opaque(self):
        """Test office documents are analysed without text."""
        analysis = analyse_document(b"PK\x03\x04", "application/vnd.ms-excel")
        assert analysis.format is DocumentFormat.XLSX
        assert analysis.classification is DocumentClassification.SPREADSHEET
        assert not analysis.has_text
