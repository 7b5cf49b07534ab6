"""On-demand Azure Monitor metrics probe for Prometheus."""

__version__ = "0.1.0"
