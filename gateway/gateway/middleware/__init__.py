"""Starlette middleware for the gateway."""
