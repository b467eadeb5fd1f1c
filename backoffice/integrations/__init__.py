"""backoffice.integrations — External service gateway modules.

All outbound HTTP calls to the accounting system must go through a gateway
in this package, never via bare `requests` calls in services or blueprints.

Current gateways:
  accounting_gateway.AccountingGateway — invoice creation, archive upload,
  file attachment (Fortnox-compatible REST API)
"""
