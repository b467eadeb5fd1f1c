"""backoffice.utils — Small request/response helpers used by blueprints."""
