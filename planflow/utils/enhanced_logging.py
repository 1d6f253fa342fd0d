# planflow/utils/enhanced_logging.py
import json
import logging
import sys
import traceback
from datetime import datetime
from typing import Dict, Any, Optional, Union


class EnhancedLogger:
    """Logger that attaches plan/step context to structured JSON messages."""

    def __init__(self, name: str, context: Optional[Dict[str, Any]] = None):
        self._logger = logging.getLogger(name)
        self._context: Dict[str, Any] = dict(context or {})

    def add_context(self, key: str, value: Any) -> None:
        """Add context information for subsequent log messages."""
        self._context[key] = value

    def remove_context(self, key: str) -> None:
        """Remove context information."""
        self._context.pop(key, None)

    def clear_context(self) -> None:
        """Clear all context information."""
        self._context.clear()

    def with_context(self, **context) -> 'EnhancedLogger':
        """Return a child logger carrying the current context plus ``context``."""
        return EnhancedLogger(self._logger.name, {**self._context, **context})

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self._context)

    def _render(self, msg: str, extra: Optional[Dict[str, Any]]) -> str:
        """Serialize a message and its context as a single JSON line."""
        payload: Dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "logger": self._logger.name,
            "message": msg,
        }
        context = {**self._context, **(extra or {})}
        if context:
            payload["context"] = context
        return json.dumps(payload, default=str)

    def _emit(self, level: int, msg: str, args: tuple, kwargs: Dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra = kwargs.pop("extra", None)
        # stacklevel 3 points the record at the caller of debug()/info()/...
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, self._render(msg, extra), *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._emit(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._emit(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._emit(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._emit(logging.ERROR, msg, args, kwargs)

    def critical(self, msg: str, *args, **kwargs) -> None:
        self._emit(logging.CRITICAL, msg, args, kwargs)

    def exception(self, msg: str, exc_info: Union[bool, BaseException] = True,
                  *args, **kwargs) -> None:
        """Log an error together with a description of the active exception."""
        extra = dict(kwargs.pop("extra", None) or {})
        if isinstance(exc_info, BaseException):
            extra["exception"] = {
                "type": type(exc_info).__name__,
                "message": str(exc_info),
            }
        elif exc_info:
            exc_type, exc_value, _ = sys.exc_info()
            if exc_type is not None:
                extra["exception"] = {
                    "type": exc_type.__name__,
                    "message": str(exc_value),
                    "traceback": traceback.format_exc(),
                }
        kwargs["extra"] = extra
        kwargs["exc_info"] = exc_info
        self._emit(logging.ERROR, msg, args, kwargs)

    def log(self, level: int, msg: str, *args, **kwargs) -> None:
        self._emit(level, msg, args, kwargs)

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def level(self) -> int:
        return self._logger.level

    @level.setter
    def level(self, level: int) -> None:
        self._logger.setLevel(level)
