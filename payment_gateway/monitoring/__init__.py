"""Monitoring and observability package."""
from .metrics import metrics
from .logging import setup_logging

__all__ = ["metrics", "setup_logging"]
