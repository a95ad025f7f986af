#!/usr/bin/env python3
"""
Unified error handling for localci.

Every failure raised by the runner carries a category, an optional
ErrorContext describing where it happened, a recoverability flag and
suggestions for the user. The ErrorHandler renders them as Rich panels.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text


class ErrorCategory(Enum):
    """Error category enumeration."""

    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    CONTAINER = "container"
    STEP = "step"
    EXPRESSION = "expression"
    CANCELLED = "cancelled"
    RUNTIME = "runtime"


@dataclass
class ErrorContext:
    """Where an error happened."""

    operation: str
    phase: Optional[str] = None
    component: Optional[str] = None
    job_name: Optional[str] = None
    step_id: Optional[str] = None
    file_path: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


def create_error_context(operation: str, **kwargs: Any) -> ErrorContext:
    """Convenience constructor for ErrorContext."""
    return ErrorContext(operation=operation, **kwargs)


class LocalCIError(Exception):
    """Base class for all structured localci errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.RUNTIME,
        context: Optional[ErrorContext] = None,
        recoverable: bool = False,
        suggestions: Optional[List[str]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context
        self.recoverable = recoverable
        self.suggestions = suggestions or []
        self.cause = cause


class ValidationError(LocalCIError):
    """Invalid user input."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, ErrorCategory.VALIDATION, **kwargs)


class ConfigurationError(LocalCIError):
    """Invalid or inconsistent configuration, including job credentials."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, ErrorCategory.CONFIGURATION, **kwargs)


class ContainerError(LocalCIError):
    """A container lifecycle operation failed."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, ErrorCategory.CONTAINER, **kwargs)


class StepError(LocalCIError):
    """A step could not be run or exited unsuccessfully."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, ErrorCategory.STEP, **kwargs)


class ExpressionError(LocalCIError):
    """An expression could not be evaluated."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, ErrorCategory.EXPRESSION, **kwargs)


class PipelineCancelled(LocalCIError):
    """Cancellation was observed at a pipeline boundary."""

    def __init__(self, message: str = "pipeline cancelled", **kwargs: Any):
        super().__init__(message, ErrorCategory.CANCELLED, **kwargs)


_CATEGORY_STYLE = {
    ErrorCategory.VALIDATION: ("⚠️", "Validation Error", "yellow"),
    ErrorCategory.CONFIGURATION: ("⚙️", "Configuration Error", "yellow"),
    ErrorCategory.CONTAINER: ("🐳", "Container Error", "red"),
    ErrorCategory.STEP: ("🚧", "Step Error", "red"),
    ErrorCategory.EXPRESSION: ("🧮", "Expression Error", "red"),
    ErrorCategory.CANCELLED: ("🛑", "Cancelled", "yellow"),
    ErrorCategory.RUNTIME: ("💥", "Runtime Error", "red"),
}


class ErrorHandler:
    """Renders errors on a Rich console and logs them."""

    def __init__(self, console: Optional[Console] = None, verbose: bool = False):
        self.console = console or Console()
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)

    def handle_error(
        self,
        error: BaseException,
        context: Optional[ErrorContext] = None,
        show_traceback: bool = False,
    ) -> None:
        """Display an error panel, with suggestions and context when known."""
        if isinstance(error, LocalCIError):
            emoji, title, style = _CATEGORY_STYLE[error.category]
            context = context or error.context
            suggestions = error.suggestions
        else:
            emoji, title, style = "💥", type(error).__name__, "red"
            suggestions = []

        body = Text(str(error), style="bold")
        if context is not None:
            for key, value in vars(context).items():
                if value:
                    body.append(f"\n{key}: {value}", style="dim")
        if suggestions:
            body.append("\n\nSuggestions:", style="bold cyan")
            for suggestion in suggestions:
                body.append(f"\n  • {suggestion}")

        self.console.print(
            Panel(body, title=f"{emoji} {title}", border_style=style, expand=False)
        )
        self.logger.debug("%s: %s", title, error)

        if show_traceback and self.verbose:
            self.console.print_exception()


_error_handler: Optional[ErrorHandler] = None


def set_error_handler(handler: Optional[ErrorHandler]) -> None:
    global _error_handler
    _error_handler = handler


def get_error_handler() -> Optional[ErrorHandler]:
    return _error_handler


def handle_error(
    error: BaseException,
    context: Optional[ErrorContext] = None,
    show_traceback: bool = False,
) -> None:
    """Route an error to the global handler, or to logging if none is set."""
    if _error_handler is None:
        logging.error("%s: %s", type(error).__name__, error)
        return
    _error_handler.handle_error(error, context=context, show_traceback=show_traceback)
