"""backoffice.middleware — Flask request hooks (logging, timing, rate limits)."""
