"""
report/__init__.py

Public API for the report sub-package.
"""

from .reporter import NO_ACTIVITY_LINE, Reporter

__all__ = ["Reporter", "NO_ACTIVITY_LINE"]
