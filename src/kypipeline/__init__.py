"""KY danger-prediction approval and risk-assessment pipeline."""

__version__ = "0.1.0"
