"""
Billing Back Office
Service layer.

Services own all business rules and transactions; blueprints only parse
requests, call a service, and translate exceptions to HTTP responses.
"""
