# planflow/context/__init__.py
"""
Conversation state shared by every step of every run.
"""
from .manager import ExecutionContext

__all__ = ['ExecutionContext']
