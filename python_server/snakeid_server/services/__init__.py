"""Pipeline services: model runtime, session lifecycle, inference."""
