"""
Accounting system integration gateway (Fortnox-compatible REST API).

All outbound HTTP calls to the accounting system go through this class.
Direct `requests` calls in services or blueprints are FORBIDDEN.

Operations:
  - create_invoice:   POST /3/invoices                         → DocumentNumber
  - upload_document:  POST /3/inbox?path=<inbox>  (multipart)  → ArchiveFileId
  - attach_document:  POST /api/fileattachments/attachments-v1 → connects an
                      archived file to an invoice (entityType "F")

Failure policy: the gateway never retries. Non-2xx responses, timeouts and
network errors raise AccountingGatewayError; the document worker counts
each as one job attempt and reschedules.

Testability: pass a mock `session` to AccountingGateway() in tests, or
patch.object the module-level `accounting_gateway` singleton.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests
from flask import current_app

from backoffice.core.exceptions import AccountingGatewayError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30

# Invoice row fields the accounting API accepts; anything else is dropped
_INVOICE_ROW_FIELDS = frozenset({
    "ArticleNumber",
    "DeliveredQuantity",
    "Price",
    "Description",
    "Unit",
    "Discount",
    "VAT",
    "AccountNumber",
    "CostCenter",
    "Project",
})


def sanitize_invoice_rows(rows: list[dict]) -> list[dict]:
    """Return copies of ``rows`` restricted to accepted invoice row fields."""
    return [{k: v for k, v in row.items() if k in _INVOICE_ROW_FIELDS} for row in rows]


class AccountingGateway:
    """Accounting REST API gateway.

    Instantiate once at module level (module-level singleton pattern).
    Connection settings are read from the Flask app config on each call:
    ACCOUNTING_API_URL, ACCOUNTING_ACCESS_TOKEN, ACCOUNTING_TIMEOUT,
    ACCOUNTING_INBOX_PATH.

    Usage:
        from backoffice.integrations.accounting_gateway import accounting_gateway
        number = accounting_gateway.create_invoice({"CustomerNumber": "117", ...})
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ── Core request dispatcher ───────────────────────────────────────────────

    def _settings(self) -> tuple[str, str, int]:
        cfg = current_app.config
        base_url = (cfg.get("ACCOUNTING_API_URL") or "").rstrip("/")
        token = cfg.get("ACCOUNTING_ACCESS_TOKEN")
        if not base_url or not token:
            raise AccountingGatewayError("Accounting API is not configured (URL/access token missing)")
        return base_url, token, int(cfg.get("ACCOUNTING_TIMEOUT", _DEFAULT_TIMEOUT))

    def _do_request(
        self,
        method: str,
        url: str,
        headers: dict,
        *,
        json_body: dict | list | None = None,
        params: dict | None = None,
        files: dict | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> requests.Response:
        """Execute a single HTTP request, no retry logic here."""
        kwargs: dict[str, Any] = {"headers": headers, "timeout": timeout}
        if json_body is not None:
            kwargs["json"] = json_body
        if params:
            kwargs["params"] = params
        if files:
            kwargs["files"] = files
        return self.session.request(method, url, **kwargs)

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | list | None = None,
        params: dict | None = None,
        files: dict | None = None,
    ) -> dict | list:
        """Execute an authenticated request and return the parsed JSON body.

        Raises:
            AccountingGatewayError: non-2xx response, timeout or network error.
        """
        base_url, token, timeout = self._settings()
        url = f"{base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        if files is None:
            headers["Content-Type"] = "application/json"

        t0 = time.perf_counter()
        try:
            resp = self._do_request(
                method, url, headers,
                json_body=json_body, params=params, files=files, timeout=timeout,
            )
        except requests.Timeout as exc:
            logger.warning("Accounting request timed out url=%s timeout=%ss", url, timeout)
            raise AccountingGatewayError(f"Request timed out after {timeout}s") from exc
        except requests.RequestException as exc:
            logger.warning("Accounting network error url=%s error=%s", url, exc)
            raise AccountingGatewayError(str(exc)[:500]) from exc

        duration_ms = (time.perf_counter() - t0) * 1000
        if not resp.ok:
            logger.warning("Accounting request failed status=%d url=%s", resp.status_code, url,
                           extra={"status": resp.status_code, "duration_ms": duration_ms})
            raise AccountingGatewayError(
                f"HTTP {resp.status_code}: {resp.text[:500]}", status_code=resp.status_code,
            )

        logger.debug("Accounting %s %s → %d", method, path, resp.status_code,
                     extra={"duration_ms": duration_ms})
        try:
            return resp.json() if resp.content else {}
        except ValueError:
            return {}

    # ── Accounting operations ─────────────────────────────────────────────────

    def create_invoice(self, invoice: dict) -> str:
        """Create an invoice and return its document number.

        Args:
            invoice: Invoice object (CustomerNumber, InvoiceDate, DueDate,
                     InvoiceRows, ...). Rows are sanitised before sending.
        """
        body = dict(invoice)
        body["InvoiceRows"] = sanitize_invoice_rows(body.get("InvoiceRows") or [])
        data = self.request("POST", "/3/invoices", json_body={"Invoice": body})
        number = ((data or {}).get("Invoice") or {}).get("DocumentNumber")
        if not number:
            raise AccountingGatewayError(f"Invoice created but DocumentNumber missing: {str(data)[:300]}")
        logger.info("Invoice %s created for customer %s", number, body.get("CustomerNumber"),
                    extra={"document_number": str(number)})
        return str(number)

    def upload_document(self, content: bytes, file_name: str) -> str:
        """Upload a PDF to the accounting inbox; return its archive file id."""
        inbox = current_app.config.get("ACCOUNTING_INBOX_PATH", "inbox_kf")
        data = self.request(
            "POST", "/3/inbox",
            params={"path": inbox},
            files={"file": (file_name, content, "application/pdf")},
        )
        file_info = (data or {}).get("File") or data or {}
        archive_id = file_info.get("ArchiveFileId") or file_info.get("archiveFileId")
        if not archive_id:
            raise AccountingGatewayError(
                f"Upload OK but ArchiveFileId missing in response: {str(file_info)[:300]}"
            )
        return str(archive_id)

    def attach_document(self, archive_id: str, document_number: str, include_on_send: bool) -> None:
        """Connect an archived file to an invoice."""
        entity_id: int | str = int(document_number) if str(document_number).isdigit() else str(document_number)
        self.request(
            "POST", "/api/fileattachments/attachments-v1",
            json_body=[{
                "entityId": entity_id,
                "entityType": "F",
                "fileId": str(archive_id),
                "includeOnSend": bool(include_on_send),
            }],
        )
        logger.info("Attached archive file %s to invoice %s (includeOnSend=%s)",
                    archive_id, document_number, include_on_send,
                    extra={"document_number": str(document_number)})


# Module-level singleton
accounting_gateway = AccountingGateway()
