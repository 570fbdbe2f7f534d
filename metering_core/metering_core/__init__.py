"""Storefront metering core: marketplace adapters, domain models, and state store."""

__version__ = "0.1.0"
