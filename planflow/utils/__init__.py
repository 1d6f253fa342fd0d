# planflow/utils/__init__.py
"""
Utility functions for planflow.

This package provides logging setup and the dotted-path helpers shared by the
parameter resolver and the condition evaluator.
"""

from .logging import setup_logging, get_logger

# EnhancedLogger is available but not exported by default
# Import directly from enhanced_logging when needed

__all__ = ['setup_logging', 'get_logger']
