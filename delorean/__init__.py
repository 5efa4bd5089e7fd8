"""delorean: release engineering for OLM-packaged operators."""

__version__ = "0.9.0"
