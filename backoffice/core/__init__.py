"""backoffice.core — Cross-cutting primitives shared by services and blueprints."""
