# planflow/cli/__init__.py
"""
Command-line interface.
"""
from .main import app

__all__ = ["app"]
