"""Service-layer orchestration for routes."""
