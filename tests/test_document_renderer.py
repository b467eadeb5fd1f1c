"""Tests for backoffice.services.document_renderer (reportlab output)."""

import hashlib

from backoffice.services import document_renderer


_ROWS = [
    {"id": 2, "date": "2026-01-06", "hours": 1.5, "userName": "Bob", "category": "Support"},
    {
        "id": 1, "date": "2026-01-05", "hours": 2, "userName": "Alice <admin>",
        "workLabel": "Install & test", "project": {"id": 1, "name": "Alpha"},
        "items": [{"articleNumber": "A-1", "quantity": 2}, {"description": "Cable", "quantity": 1}],
    },
]


class TestRender:
    def test_returns_pdf_with_matching_hash(self):
        doc = document_renderer.render(_ROWS, {"from": "2026-01-01", "to": "2026-01-31"}, "en",
                                       document_number="5001", customer_name="Acme AB")

        assert doc.content.startswith(b"%PDF")
        assert doc.size_bytes == len(doc.content)
        assert doc.content_hash == hashlib.sha256(doc.content).hexdigest()

    def test_same_input_renders_identical_bytes(self):
        first = document_renderer.render(_ROWS, None, "sv", document_number="5001")
        second = document_renderer.render(_ROWS, None, "sv", document_number="5001")

        assert first.content_hash == second.content_hash

    def test_empty_rows_and_unknown_language_still_render(self):
        doc = document_renderer.render([], None, "de")
        assert doc.content.startswith(b"%PDF")
