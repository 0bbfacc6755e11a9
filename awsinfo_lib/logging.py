"""
AWS Info Logging Module
-----------------------

Unified logging for the awsinfo inventory tool:
- Rich console output for operator-facing messages
- Optional debug log file with caller information
- boto3/botocore/httpx noise suppression unless tracing is requested
- Timing of store updates
- Store and AWS API operation tracking
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install

# Debug logs land next to the stores unless a path is given
DEFAULT_DEBUG_LOG_DIR = Path.home() / ".awsinfo" / "logs"

NOISY_LOGGERS = (
    "boto3",
    "botocore",
    "botocore.credentials",
    "botocore.httpsession",
    "botocore.parsers",
    "botocore.endpoint",
    "urllib3",
    "s3transfer",
    "httpx",
    "httpcore",
)


class SimpleTimer:
    """Simple context manager for timing operations."""

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time: Optional[float] = None
        self.duration: float = 0.0

    def __enter__(self) -> "SimpleTimer":
        self.start_time = time.perf_counter()
        self.logger.debug("Starting: %s", self.operation, stacklevel=3)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.start_time is None:
            return
        self.duration = time.perf_counter() - self.start_time
        if exc_type is None:
            self.logger.debug(
                "Completed: %s (%.3fs)", self.operation, self.duration, stacklevel=3
            )
        else:
            self.logger.error(
                "Failed: %s (%.3fs) - %s",
                self.operation,
                self.duration,
                exc_val,
                stacklevel=3,
            )


class InventoryLogger:
    """
    awsinfo logger.

    Wraps a standard library logger with a RichHandler on stderr so that
    listings printed to stdout stay clean for piping.
    """

    def __init__(self, name: str = "awsinfo"):
        self.name = name
        self.logger = logging.getLogger(name)
        self._debug_mode = False
        self._log_file: Optional[Path] = None
        self._output_console: Optional[Console] = None
        self._is_configured = False

    def configure(
        self, debug: bool = False, log_file: Optional[Path] = None, trace_aws: bool = False
    ) -> None:
        """One-method setup for all logging needs."""
        if self._is_configured and not debug:
            return

        self._debug_mode = debug
        self._log_file = log_file

        self.logger.handlers.clear()
        self.logger.setLevel(logging.DEBUG if debug else logging.INFO)
        self.logger.propagate = False

        if debug:
            install(show_locals=True)

        console_handler = RichHandler(
            console=Console(stderr=True),
            show_time=debug,
            show_path=debug,
            markup=False,
            rich_tracebacks=True,
            tracebacks_show_locals=debug,
            keywords=[],
        )
        console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        self.logger.addHandler(console_handler)

        if debug and log_file:
            self._setup_file_logging(log_file)

        if trace_aws and debug:
            self._enable_aws_tracing()
        else:
            self._suppress_noisy_loggers()

        self._is_configured = True

        if debug:
            self.logger.debug("Debug mode enabled")
            if log_file:
                self.logger.debug("Log file: %s", log_file)

    def _setup_file_logging(self, log_file: Path) -> None:
        """Setup file logging with detailed format."""
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s.%(msecs)03d | %(name)s | %(levelname)-8s | "
                    "%(pathname)s:%(funcName)s:%(lineno)d | %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            self.logger.addHandler(file_handler)
            self.logger.debug("=" * 80)
            self.logger.debug("awsinfo debug session started")
            self.logger.debug("=" * 80)
        except OSError as e:
            self.logger.warning("Could not setup file logging: %s", e)

    def _suppress_noisy_loggers(self) -> None:
        """Suppress noisy third-party library loggers."""
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    def _enable_aws_tracing(self) -> None:
        """Route botocore request/response logging through our handlers."""
        for logger_name in ("botocore.endpoint", "botocore.parsers", "httpx"):
            aws_logger = logging.getLogger(logger_name)
            aws_logger.setLevel(logging.DEBUG)
            for handler in self.logger.handlers:
                if handler not in aws_logger.handlers:
                    aws_logger.addHandler(handler)
            aws_logger.propagate = False
        self.logger.debug("AWS API tracing enabled")

    def get_output_console(self) -> Console:
        """Console for listings and user-facing output (stdout)."""
        if self._output_console is None:
            self._output_console = Console()
        return self._output_console

    @contextmanager
    def timer(self, operation: str) -> Any:
        """Context manager for timing operations with proper caller context."""
        timer = SimpleTimer(self.logger, operation)
        with timer:
            yield timer

    def is_debug_enabled(self) -> bool:
        """Check if debug mode is enabled."""
        return self._debug_mode

    def debug(self, message: str, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("stacklevel", 2)
        self.logger.debug(message, *args, **kwargs)

    def info(self, message: str, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("stacklevel", 2)
        self.logger.info(message, *args, **kwargs)

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("stacklevel", 2)
        self.logger.warning(message, *args, **kwargs)

    def error(self, message: str, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("stacklevel", 2)
        self.logger.error(message, *args, **kwargs)

    def log_aws_operation(self, service: str, operation: str, region: str, **kwargs: Any) -> None:
        """Log an AWS API call with its parameters."""
        extra_info = ", ".join(f"{k}={v}" for k, v in kwargs.items()) if kwargs else ""
        context = f" ({extra_info})" if extra_info else ""
        self.logger.debug(
            "AWS API Call: %s.%s() in %s%s", service, operation, region, context, stacklevel=2
        )

    def log_store_operation(self, operation: str, store: str, **kwargs: Any) -> None:
        """Log store load/save/sync operations."""
        extra_info = ", ".join(f"{k}={v}" for k, v in kwargs.items()) if kwargs else ""
        context = f" ({extra_info})" if extra_info else ""
        self.logger.debug("Store %s: %s%s", operation.upper(), store, context, stacklevel=2)

    def log_error_context(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        """Log error with contextual information."""
        error_msg = f"Error: {type(error).__name__}: {error}"
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            error_msg += f" (Context: {context_str})"
        self.logger.error(error_msg, stacklevel=2)


_inventory_logger: Optional[InventoryLogger] = None


def configure_logging(
    debug: bool = False, log_file: Optional[Path] = None, trace_aws: bool = False
) -> InventoryLogger:
    """
    Configure and return the awsinfo logging system.

    Args:
        debug: Enable debug mode with verbose logging
        log_file: Optional file path for debug log output
        trace_aws: Also route botocore/httpx wire logging (requires debug=True)
    """
    global _inventory_logger

    if _inventory_logger is None:
        _inventory_logger = InventoryLogger("awsinfo")

    _inventory_logger.configure(debug=debug, log_file=log_file, trace_aws=trace_aws)
    return _inventory_logger


def get_logger(name: str = "awsinfo") -> InventoryLogger:
    """Get the shared logger, configuring defaults on first use."""
    global _inventory_logger

    if _inventory_logger is None:
        _inventory_logger = InventoryLogger(name)
        _inventory_logger.configure(debug=False)

    return _inventory_logger


def get_output_console() -> Console:
    """Console for listings and other user-facing output."""
    return get_logger().get_output_console()


def create_debug_log_file(log_file: Optional[Path]) -> Path:
    """
    Create a debug log file path with timestamp.

    A path with a suffix is used as-is; a directory gets a timestamped file;
    None falls back to DEFAULT_DEBUG_LOG_DIR.
    """
    timestamp = time.strftime("%Y%m%d_%H%M%S")

    if log_file:
        log_path = Path(log_file)
        if log_path.suffix:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            return log_path
        log_path.mkdir(parents=True, exist_ok=True)
        return log_path / f"awsinfo_debug_{timestamp}.log"

    DEFAULT_DEBUG_LOG_DIR.mkdir(parents=True, exist_ok=True)
    return DEFAULT_DEBUG_LOG_DIR / f"awsinfo_debug_{timestamp}.log"
