"""Parliamentary open-data sync and statistics engine."""

__version__ = "1.0.0"
