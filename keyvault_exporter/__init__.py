"""Azure Key Vault Prometheus exporter."""

__version__ = "1.0.0"
