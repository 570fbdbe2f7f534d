"""Storefront Meter gateway: webhook ingestion and usage-metering HTTP API."""

__version__ = "0.1.0"
