"""Anonymous burnout check-ins, attendance reconciliation and team analytics."""

__version__ = "1.0.0"
