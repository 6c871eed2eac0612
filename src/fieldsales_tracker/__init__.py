"""Field-sales agent runtime: location reporting and live CRM notifications."""

__version__ = "0.3.0"
