"""
Centralized build-log output for llamabuild.

Two channels are kept apart:

- The directive stream (stdout). The consuming build parses every line
  written here, so only directive lines (``cargo:...`` or linker flags) go
  to it.
- The human log (stderr). Lines are prefixed with elapsed time in MM:SS.cc
  format so a slow phase is easy to spot.

Example log output:
    00:00.02 llamabuild v0.3.0
    00:00.03 [1/6] Resolving build environment...
    00:00.41 [2/6] Staging llama.cpp sources...
    00:41.13       Done (40.72s)

Usage:
    from llamabuild.output import emit_directive, log, log_debug, log_phase

    log_phase(1, 6, "Resolving build environment...")
    emit_directive("cargo:rustc-link-search=native=/out/lib")
    log_debug("Target: x86_64-unknown-linux-gnu")
"""

import sys
import time
from types import TracebackType
from typing import Optional, TextIO

# Global state for the timer
_start_time: Optional[float] = None
_log_stream: TextIO = sys.stderr
_directive_stream: TextIO = sys.stdout
_debug: bool = False
_debug_directives: bool = False


def init_timer(log_stream: Optional[TextIO] = None, directive_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the program timer and, optionally, the output streams.

    Args:
        log_stream: Stream for timestamped human-readable lines (defaults to sys.stderr)
        directive_stream: Stream for directive lines (defaults to sys.stdout)
    """
    global _start_time, _log_stream, _directive_stream
    _start_time = time.time()
    if log_stream is not None:
        _log_stream = log_stream
    if directive_stream is not None:
        _directive_stream = directive_stream


def set_debug(debug: bool) -> None:
    """
    Enable or disable ``[DEBUG]`` diagnostic lines in the build log.

    Args:
        debug: True when the BUILD_DEBUG toggle is set
    """
    global _debug
    _debug = debug


def is_debug() -> bool:
    """Return True when debug diagnostics are enabled."""
    return _debug


def set_debug_directives(enabled: bool) -> None:
    """
    Choose where ``[DEBUG]`` lines go.

    Args:
        enabled: True to write them to the directive stream as
            ``cargo:warning=`` lines, False to write them to the log stream
    """
    global _debug_directives
    _debug_directives = enabled


def get_elapsed() -> float:
    """
    Get elapsed time since timer initialization.

    Returns:
        Elapsed time in seconds
    """
    global _start_time
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """
    Format the current elapsed time as MM:SS.cc.

    Returns:
        Formatted timestamp string
    """
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str) -> None:
    line = f"{format_timestamp()} {message}\n"
    _log_stream.write(line)
    _log_stream.flush()


def emit_directive(line: str) -> None:
    """
    Write one directive line, unprefixed, to the directive stream.

    Args:
        line: Complete directive line (without trailing newline)
    """
    _directive_stream.write(f"{line}\n")
    _directive_stream.flush()


def log(message: str) -> None:
    """Log a message with timestamp."""
    _print(message)


def log_phase(phase: int, total: int, message: str) -> None:
    """
    Log a build phase message.

    Format: [N/M] message
    """
    _print(f"[{phase}/{total}] {message}")


def log_detail(message: str, indent: int = 6) -> None:
    """Log an indented detail message."""
    _print(f"{' ' * indent}{message}")


def log_debug(message: str) -> None:
    """
    Log a diagnostic line when debug output is enabled.

    When the directive stream carries cargo lines, the message is written
    there as a warning directive so cargo surfaces it in the build log.
    Otherwise it goes to the log stream and stdout stays parseable.

    Args:
        message: Diagnostic message
    """
    if not _debug:
        return
    if _debug_directives:
        emit_directive(f"cargo:warning=[DEBUG] {message}")
    else:
        _print(f"[DEBUG] {message}")


def log_error(message: str) -> None:
    """Log a fatal error message."""
    _print(f"ERROR: {message}")


def log_header(title: str, version: str) -> None:
    """Log the program banner."""
    _print(f"{title} v{version}")


class TimedLogger:
    """
    Context manager for logging with elapsed time tracking.

    Usage:
        with TimedLogger("Building llama.cpp", phase=(4, 6)) as timed:
            timed.detail("Configured with BUILD_SHARED_LIBS=OFF")
        # Logs "Done (12.34s)", or "Failed after 12.34s" if the block raises
    """

    def __init__(self, operation: str, phase: Optional[tuple[int, int]] = None):
        self.operation = operation
        self.phase = phase
        self.start_time = 0.0

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.time()
        if self.phase:
            log_phase(self.phase[0], self.phase[1], f"{self.operation}...")
        else:
            log(f"{self.operation}...")
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        del exc_val, exc_tb  # Unused
        elapsed = time.time() - self.start_time
        if exc_type is None:
            log_detail(f"Done ({elapsed:.2f}s)")
        elif not issubclass(exc_type, KeyboardInterrupt):
            log_detail(f"Failed after {elapsed:.2f}s")
        return None

    def detail(self, message: str) -> None:
        """Log a detail message within this operation."""
        log_detail(message)
