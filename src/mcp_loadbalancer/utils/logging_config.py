"""Logging configuration for lbcraft.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing of engine invocations and tool calls

Environment Variables:
    LBCRAFT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    LBCRAFT_LOG_FILE: Path to log file (default: ~/.lbcraft/lbcraft.log)
    LBCRAFT_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    LBCRAFT_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from mcp_loadbalancer.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("engine")
    async def run(self, command, transaction_id="", *args):
        ...

    async with timed_section("tool:get_entity", target="frontend/fe_main"):
        ...
"""
import functools
import logging
import os
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("lbcraft.perf")


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("LBCRAFT_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".lbcraft" / "lbcraft.log"
    path_str = os.environ.get("LBCRAFT_LOG_FILE", str(default_path))
    return Path(path_str)


def setup_logging() -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (respects LBCRAFT_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger for timing metrics
    """
    log_level = get_log_level()
    log_file = get_log_file()
    max_size_mb = int(os.environ.get("LBCRAFT_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("LBCRAFT_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-30s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Console goes to stderr; stdout carries the MCP stdio protocol
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)

    perf_log_file = log_file.parent / "lbcraft-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)

    for name in ("lbcraft", "mcp_loadbalancer"):
        app_logger = logging.getLogger(name)
        app_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
        app_logger.addHandler(console_handler)
        app_logger.addHandler(file_handler)

    perf_logger.setLevel(logging.DEBUG)
    perf_logger.addHandler(perf_handler)
    perf_logger.propagate = False

    logging.getLogger("lbcraft").info(
        f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}"
    )
    perf_logger.info(f"Performance logging to: {perf_log_file}")


def _log_timing(operation: str, target: Optional[str], start: float,
                error: Optional[BaseException] = None, extra: str = "",
                stats: Optional["PerfStats"] = None) -> None:
    elapsed = (time.perf_counter() - start) * 1000
    (stats or global_stats).record(operation, elapsed)
    outcome = "OK" if error is None else f"FAIL: {error}"
    msg = f"{operation:20s} | {target or 'N/A':30s} | {elapsed:8.2f}ms | {outcome}"
    if extra:
        msg += f" | {extra}"
    if error is None:
        perf_logger.info(msg)
    else:
        perf_logger.warning(msg)


def timed(operation: str, stats: Optional["PerfStats"] = None):
    """Decorator to log execution time of engine coroutines.

    The first positional argument after ``self`` (the engine command) is
    used as the log target. Timings go to ``stats``, or ``global_stats``
    when not given.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            target = str(args[1]) if len(args) > 1 else None
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _log_timing(operation, target, start, e, stats=stats)
                raise
            _log_timing(operation, target, start, stats=stats)
            return result

        return wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, target: Optional[str] = None, **extra):
    """Time a block of MCP tool handling.

    Usage:
        async with timed_section("tool:commit_transaction", target=transaction_id):
            await client.commit_transaction(transaction_id)
    """
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items())
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        _log_timing(operation, target, start, e, extra_str)
        raise
    _log_timing(operation, target, start, extra=extra_str)


class PerfStats:
    """Collect and report performance statistics.

    Usage:
        stats = PerfStats()
        stats.record("engine", 150.5)
        stats.record("engine", 145.2)
        print(stats.summary())
    """

    def __init__(self):
        self._data: dict[str, list[float]] = {}

    def record(self, operation: str, duration_ms: float) -> None:
        """Record a timing measurement."""
        self._data.setdefault(operation, []).append(duration_ms)

    def count(self, operation: str) -> int:
        return len(self._data.get(operation, []))

    def summary(self) -> str:
        """Generate summary statistics."""
        lines = ["Performance Summary", "=" * 60]

        for op, times in sorted(self._data.items()):
            if not times:
                continue
            count = len(times)
            avg = sum(times) / count
            lines.append(
                f"{op:20s} | count={count:4d} | "
                f"avg={avg:8.2f}ms | min={min(times):8.2f}ms | max={max(times):8.2f}ms"
            )

        return "\n".join(lines)

    def clear(self) -> None:
        """Clear all recorded data."""
        self._data.clear()


# Global stats instance for convenience
global_stats = PerfStats()
