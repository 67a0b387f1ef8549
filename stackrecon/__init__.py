"""stackrecon — stack dependency ordering and export reconciliation."""

__version__ = "0.1.0"
