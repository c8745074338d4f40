"""Diagnostics sink for authoring problems found while patching.

Every report is kept (so callers and tests can inspect them) and logged with
its document position. Reporting never raises.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .documents import Mark
from .errors import DefpatchError
from .logging import get_logger

logger = get_logger(__name__)


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    message: str
    mark: Mark | None = None

    def __str__(self) -> str:
        where = f"{self.mark}: " if self.mark is not None else ""
        return f"{where}{self.severity.value}: {self.message}"


def _log_unhandled(exc: BaseException) -> None:
    logger.error("unhandled_exception", error=str(exc), exc_info=exc)


_unhandled_hook: Callable[[BaseException], None] = _log_unhandled


def set_unhandled_hook(hook: Callable[[BaseException], None] | None) -> None:
    """Install the process-wide handler for programmer-level failures."""
    global _unhandled_hook
    _unhandled_hook = hook if hook is not None else _log_unhandled


@dataclass
class Diagnostics:
    records: list[Diagnostic] = field(default_factory=list)
    on_unhandled: Callable[[BaseException], None] | None = None

    def _emit(self, severity: Severity, message: str, mark: Mark | None, **context: Any):
        diagnostic = Diagnostic(severity, message, mark)
        self.records.append(diagnostic)
        if mark is not None:
            context.update(source=mark.source, line=mark.line, column=mark.column)
        getattr(logger, severity.value)(message, **context)
        return diagnostic

    def info(self, message: str, mark: Mark | None = None, **context: Any) -> Diagnostic:
        return self._emit(Severity.INFO, message, mark, **context)

    def warning(self, message: str, mark: Mark | None = None, **context: Any) -> Diagnostic:
        return self._emit(Severity.WARNING, message, mark, **context)

    def error(self, message: str, mark: Mark | None = None, **context: Any) -> Diagnostic:
        return self._emit(Severity.ERROR, message, mark, **context)

    def report(self, exc: DefpatchError, **context: Any) -> Diagnostic:
        """Record an authoring error."""
        return self.error(exc.msg, exc.mark, error=type(exc).__name__, **context)

    def unhandled(self, exc: BaseException, **context: Any) -> None:
        """Forward a programmer-level failure to the unhandled-exception hook."""
        self.error(f"unhandled {type(exc).__name__}: {exc}", getattr(exc, "mark", None), **context)
        hook = self.on_unhandled or _unhandled_hook
        try:
            hook(exc)
        except Exception:
            logger.exception("unhandled_hook_failed")

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.records if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.records if d.severity is Severity.WARNING]

    def clear(self) -> None:
        self.records.clear()
