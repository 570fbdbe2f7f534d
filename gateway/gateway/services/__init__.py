"""Request-scoped services implementing the metering pipeline."""
