"""
Tests for text extraction.
"""
import fitz
import pytest

from apps.indexing.extractor import (
    ExtractionError,
    extract_text,
    extract_text_from_bytes,
    unsupported_placeholder,
)


def make_pdf(text: str) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), text)
    content = doc.tobytes()
    doc.close()
    return content


class TestExtractText:
    """Tests for extract_text dispatch by MIME type."""

    def test_plain_text(self):
        assert extract_text('Hello world'.encode('utf-8'), 'text/plain') == 'Hello world'

    def test_text_with_charset_parameter(self):
        """MIME parameters are ignored."""
        assert extract_text(b'abc', 'text/plain; charset=utf-8') == 'abc'

    def test_utf8_bom_is_stripped(self):
        assert extract_text(b'\xef\xbb\xbfcontract', 'text/plain') == 'contract'

    def test_invalid_utf8_falls_back(self):
        """Undecodable bytes are dropped rather than failing."""
        assert extract_text_from_bytes(b'ok\xff\xfe done') == 'ok done'

    @pytest.mark.parametrize('mime', ['text/csv', 'application/json', 'application/xml', 'text/markdown'])
    def test_textual_types_are_decoded(self, mime):
        assert extract_text(b'a,b\n1,2', mime) == 'a,b\n1,2'

    def test_pdf(self):
        """Should extract the text layer of a PDF."""
        text = extract_text(make_pdf('Master services agreement'), 'application/pdf')

        assert 'Master services agreement' in text

    def test_corrupt_pdf_raises(self):
        with pytest.raises(ExtractionError):
            extract_text(b'definitely not a pdf', 'application/pdf')

    def test_unsupported_type_placeholder(self):
        """Formats without an extractor produce a placeholder sentence."""
        mime = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'

        assert extract_text(b'PK\x03\x04', mime) == unsupported_placeholder(mime)
        assert unsupported_placeholder('image/png') == (
            'Text extraction from image/png documents is not yet supported.'
        )
