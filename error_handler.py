"""Centralized error handling and user feedback for the panel."""

import errno
import sys
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from logging_config import get_logger

logger = get_logger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels for user feedback."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors raised inside the panel core."""
    SPAWN = "spawn"
    PROCESS_EXIT = "process_exit"
    HELP_PROBE = "help_probe"
    HELP_PARSE = "help_parse"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


@dataclass
class ErrorInfo:
    """Structured error information."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    user_message: str
    technical_details: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    exception: Optional[BaseException] = None


class ErrorHandler:
    """Logs errors by severity and forwards them to an optional listener."""

    def __init__(self):
        self.notification_callback: Optional[Callable[[ErrorInfo], None]] = None

    def set_notification_callback(self, callback: Optional[Callable[[ErrorInfo], None]]):
        """Set callback function for user notifications."""
        self.notification_callback = callback
        logger.debug("Error notification callback registered")

    def handle_error(
        self,
        exception: BaseException,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorInfo:
        """Handle an error with logging and user feedback."""
        details = None
        if exception is not None and exception.__traceback__ is not None:
            details = "".join(traceback.format_exception(type(exception), exception, exception.__traceback__))

        error_info = ErrorInfo(
            category=category,
            severity=severity,
            message=str(exception),
            user_message=user_message or self._generate_user_message(exception, category),
            technical_details=details,
            context=context or {},
            exception=exception,
        )

        self._log_error(error_info)

        if self.notification_callback:
            try:
                self.notification_callback(error_info)
            except Exception as e:
                logger.error(f"Error in notification callback: {e}")

        return error_info

    def handle_spawn_error(
        self,
        exception: BaseException,
        session_id: str,
        program: Optional[str] = None
    ) -> ErrorInfo:
        """Handle a failure to start a session's process."""
        context = {"session_id": session_id, "program": program}
        return self.handle_error(
            exception=exception,
            category=ErrorCategory.SPAWN,
            severity=ErrorSeverity.ERROR,
            user_message=self._generate_spawn_user_message(exception, program),
            context=context
        )

    def handle_process_exit(self, session_id: str, exit_code: int) -> ErrorInfo:
        """Report a session's process ending; a non-zero code is a warning."""
        return self.handle_error(
            exception=ChildProcessError(f"process exited with code {exit_code}"),
            category=ErrorCategory.PROCESS_EXIT,
            severity=ErrorSeverity.INFO if exit_code == 0 else ErrorSeverity.WARNING,
            user_message=f"[Process exited with code {exit_code}]",
            context={"session_id": session_id, "exit_code": exit_code}
        )

    def handle_help_probe_error(
        self,
        exception: BaseException,
        program: str,
        flag: str
    ) -> ErrorInfo:
        """Help probes are a convenience; failures are logged quietly."""
        return self.handle_error(
            exception=exception,
            category=ErrorCategory.HELP_PROBE,
            severity=ErrorSeverity.DEBUG,
            user_message=f"Could not read help for '{program}'",
            context={"program": program, "flag": flag}
        )

    def handle_help_parse_error(self, program: str, errors: list) -> ErrorInfo:
        """Help text that yielded no flags; only the diagnostic is kept."""
        return self.handle_error(
            exception=ValueError("; ".join(errors)),
            category=ErrorCategory.HELP_PARSE,
            severity=ErrorSeverity.DEBUG,
            context={"program": program}
        )

    def handle_configuration_error(
        self,
        exception: BaseException,
        config_key: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.WARNING
    ) -> ErrorInfo:
        """Handle configuration-related errors."""
        return self.handle_error(
            exception=exception,
            category=ErrorCategory.CONFIGURATION,
            severity=severity,
            user_message=self._generate_config_user_message(exception, config_key),
            context={"config_key": config_key}
        )

    def _log_error(self, error_info: ErrorInfo):
        """Log error information based on severity."""
        log_message = f"[{error_info.category.value}] {error_info.message}"

        if error_info.context:
            log_message += f" | Context: {error_info.context}"

        if error_info.severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message, exc_info=error_info.exception)
        elif error_info.severity == ErrorSeverity.ERROR:
            logger.error(log_message, exc_info=error_info.exception)
        elif error_info.severity == ErrorSeverity.WARNING:
            logger.warning(log_message)
        elif error_info.severity == ErrorSeverity.INFO:
            logger.info(log_message)
        else:
            logger.debug(log_message)

    def _generate_user_message(self, exception: BaseException, category: ErrorCategory) -> str:
        """Generate user-friendly error message."""
        if category == ErrorCategory.SPAWN:
            return f"Error starting terminal: {exception}"
        elif category == ErrorCategory.PROCESS_EXIT:
            return f"Process ended unexpectedly: {exception}"
        elif category in (ErrorCategory.HELP_PROBE, ErrorCategory.HELP_PARSE):
            return f"Flag suggestions unavailable: {exception}"
        elif category == ErrorCategory.CONFIGURATION:
            return f"Configuration error: {exception}"
        else:
            return f"An unexpected error occurred: {exception}"

    def _generate_spawn_user_message(self, exception: BaseException, program: Optional[str]) -> str:
        """Generate the one-line message written into a session that failed to start."""
        what = f"'{program}'" if program else "the terminal process"
        if isinstance(exception, FileNotFoundError) or getattr(exception, "errno", None) == errno.ENOENT:
            return f"Error starting terminal: {what} was not found. Check the command setting and your PATH."
        if isinstance(exception, PermissionError):
            return f"Error starting terminal: permission denied running {what}."
        return f"Error starting terminal: {exception}"

    def _generate_config_user_message(
        self,
        exception: BaseException,
        config_key: Optional[str]
    ) -> str:
        """Generate user-friendly configuration error message."""
        key_info = f" for setting '{config_key}'" if config_key else ""

        if "json" in str(exception).lower():
            return f"Configuration file contains invalid JSON{key_info}. Please check the syntax."
        return f"Invalid configuration value{key_info}: {exception}"


# Global error handler instance
_error_handler = ErrorHandler()


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    return _error_handler


def handle_error(
    exception: BaseException,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    severity: ErrorSeverity = ErrorSeverity.ERROR,
    user_message: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> ErrorInfo:
    """Convenience function to handle errors using the global handler."""
    return _error_handler.handle_error(exception, category, severity, user_message, context)


def handle_spawn_error(exception: BaseException, session_id: str, program: Optional[str] = None) -> ErrorInfo:
    """Convenience function to handle spawn errors."""
    return _error_handler.handle_spawn_error(exception, session_id, program)


def handle_process_exit(session_id: str, exit_code: int) -> ErrorInfo:
    """Convenience function to report a process exit."""
    return _error_handler.handle_process_exit(session_id, exit_code)


def handle_help_probe_error(exception: BaseException, program: str, flag: str) -> ErrorInfo:
    """Convenience function to handle help probe errors."""
    return _error_handler.handle_help_probe_error(exception, program, flag)


def handle_help_parse_error(program: str, errors: list) -> ErrorInfo:
    """Convenience function to report help text without flags."""
    return _error_handler.handle_help_parse_error(program, errors)


def handle_configuration_error(
    exception: BaseException,
    config_key: Optional[str] = None,
    severity: ErrorSeverity = ErrorSeverity.WARNING
) -> ErrorInfo:
    """Convenience function to handle configuration errors."""
    return _error_handler.handle_configuration_error(exception, config_key, severity)


def install_excepthook():
    """Log uncaught exceptions as critical instead of letting them vanish."""
    def _hook(exc_type, exc, tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        handle_error(exc, severity=ErrorSeverity.CRITICAL, user_message="Unhandled error")

    sys.excepthook = _hook
