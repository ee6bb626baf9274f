"""altsignal: alternative-data signal fusion and alerting pipeline."""

__version__ = "0.3.0"
