"""Unit tests for backoffice.integrations.accounting_gateway.

A MagicMock stands in for requests.Session, so no network is touched.
"""

from unittest.mock import MagicMock

import pytest
import requests

from backoffice.core.exceptions import AccountingGatewayError
from backoffice.integrations.accounting_gateway import AccountingGateway, sanitize_invoice_rows


def _response(status=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.text = text
    resp.content = b"{}" if payload is not None else b""
    resp.json.return_value = payload
    return resp


def _gateway(*responses, side_effect=None):
    session = MagicMock()
    if side_effect is not None:
        session.request.side_effect = side_effect
    else:
        session.request.side_effect = list(responses)
    return AccountingGateway(session=session), session


class TestCreateInvoice:
    def test_posts_invoice_and_returns_document_number(self):
        gw, session = _gateway(_response(201, {"Invoice": {"DocumentNumber": 5001}}))

        number = gw.create_invoice({
            "CustomerNumber": "117",
            "InvoiceRows": [{"Description": "Labor", "DeliveredQuantity": 2, "Bogus": 1}],
        })

        assert number == "5001"
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "POST"
        assert url == "https://api.fortnox.se/3/invoices"
        assert kwargs["headers"]["Authorization"] == "Bearer test-token"
        assert kwargs["json"]["Invoice"]["InvoiceRows"] == [
            {"Description": "Labor", "DeliveredQuantity": 2},
        ]

    def test_missing_document_number_is_an_error(self):
        gw, _ = _gateway(_response(200, {"Invoice": {}}))

        with pytest.raises(AccountingGatewayError):
            gw.create_invoice({"CustomerNumber": "117", "InvoiceRows": []})

    def test_non_2xx_raises_with_status(self):
        gw, _ = _gateway(_response(429, {}, text="Too many requests"))

        with pytest.raises(AccountingGatewayError) as exc_info:
            gw.create_invoice({"CustomerNumber": "117"})
        assert exc_info.value.status_code == 429

    def test_timeout_raises(self):
        gw, _ = _gateway(side_effect=requests.Timeout("slow"))

        with pytest.raises(AccountingGatewayError, match="timed out"):
            gw.create_invoice({"CustomerNumber": "117"})

    def test_network_error_raises(self):
        gw, _ = _gateway(side_effect=requests.ConnectionError("refused"))

        with pytest.raises(AccountingGatewayError):
            gw.create_invoice({"CustomerNumber": "117"})

    def test_missing_token_raises_before_request(self, app):
        gw, session = _gateway(_response(200, {}))
        app.config["ACCOUNTING_ACCESS_TOKEN"] = None
        try:
            with pytest.raises(AccountingGatewayError):
                gw.create_invoice({"CustomerNumber": "117"})
        finally:
            app.config["ACCOUNTING_ACCESS_TOKEN"] = "test-token"
        session.request.assert_not_called()


class TestDocuments:
    def test_upload_sends_multipart_to_inbox(self):
        gw, session = _gateway(_response(201, {"File": {"ArchiveFileId": "ARC-1"}}))

        archive_id = gw.upload_document(b"%PDF", "report.pdf")

        assert archive_id == "ARC-1"
        kwargs = session.request.call_args.kwargs
        assert kwargs["params"] == {"path": "inbox_kf"}
        assert kwargs["files"] == {"file": ("report.pdf", b"%PDF", "application/pdf")}
        assert "Content-Type" not in kwargs["headers"]

    def test_upload_without_archive_id_is_an_error(self):
        gw, _ = _gateway(_response(201, {"File": {}}))

        with pytest.raises(AccountingGatewayError):
            gw.upload_document(b"%PDF", "report.pdf")

    def test_attach_uses_numeric_entity_id(self):
        gw, session = _gateway(_response(200, {}))

        gw.attach_document("ARC-1", "5001", True)

        kwargs = session.request.call_args.kwargs
        assert session.request.call_args.args[1].endswith("/api/fileattachments/attachments-v1")
        assert kwargs["json"] == [{
            "entityId": 5001, "entityType": "F", "fileId": "ARC-1", "includeOnSend": True,
        }]


def test_sanitize_invoice_rows_keeps_known_fields():
    rows = sanitize_invoice_rows([{"Description": "x", "VAT": 25, "Secret": "y"}])
    assert rows == [{"Description": "x", "VAT": 25}]
