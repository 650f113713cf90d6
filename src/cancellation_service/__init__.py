"""Order cancellation service with Axiom-backed attempt logging."""

__version__ = "1.0.0"
