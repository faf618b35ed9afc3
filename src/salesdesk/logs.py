"""Logging utilities for the application."""

from __future__ import annotations
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
import traceback
from typing import Dict, List, Optional

from .config.settings import settings


LOG_TYPES = ("system", "zoho", "error")


def logs_dir() -> Path:
    """Get the logs directory path."""
    base_dir = settings.runs_dir if settings.runs_dir else "runs"
    log_dir = Path(base_dir) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _level(name: str) -> int:
    return getattr(logging, (name or "info").upper(), logging.INFO)


class LogManager:
    """Manager for application logs."""
    _instance: Optional[LogManager] = None

    @classmethod
    def get_instance(cls) -> LogManager:
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = LogManager()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next call re-reads settings."""
        cls._instance = None

    def __init__(self):
        """Initialize loggers."""
        self.loggers: Dict[str, logging.Logger] = {}
        self.log_dir = logs_dir()
        self._setup_loggers()

    def _file_logger(self, name: str, level: int, fmt: str) -> logging.Logger:
        logger = logging.getLogger(name)
        logger.propagate = False  # Don't propagate to root logger
        logger.setLevel(level)
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()
        handler = RotatingFileHandler(
            self.log_dir / f"{name}.log",
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)
        return logger

    def _setup_loggers(self):
        """Set up the different loggers."""
        level = _level(settings.zohoinv_log_level)

        # Configure root logger to capture all module-level logging
        root_logger = logging.getLogger()
        if not root_logger.handlers:  # Only add handler if none exists
            root_handler = RotatingFileHandler(
                self.log_dir / "system.log",
                maxBytes=10*1024*1024,  # 10MB
                backupCount=5,
                encoding="utf-8",
            )
            root_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))
            root_logger.addHandler(root_handler)
            root_logger.setLevel(level)

        self.loggers["system"] = self._file_logger("system", level, '%(asctime)s - %(levelname)s - %(message)s')
        self.loggers["zoho"] = self._file_logger("zoho", level, '%(asctime)s - %(levelname)s - %(message)s')
        self.loggers["error"] = self._file_logger(
            "error", logging.ERROR, '%(asctime)s - %(levelname)s - %(message)s\n%(pathname)s:%(lineno)d'
        )

    def _log(self, channel: str, message: str, level: str = "INFO"):
        logger = self.loggers[channel]
        if level == "ERROR":
            logger.error(message)
            # Also log to error logger
            self.loggers["error"].error(f"{channel.upper()}: {message}")
        elif level == "WARNING":
            logger.warning(message)
        elif level == "DEBUG":
            logger.debug(message)
        else:
            logger.info(message)

    def log_system(self, message: str, level: str = "INFO"):
        """Log a system message."""
        self._log("system", message, level)

    def log_zoho(self, message: str, level: str = "INFO"):
        """Log a Zoho API exchange (request or response preview)."""
        self._log("zoho", message, level)

    def log_error(self, message: str, exception: Optional[BaseException] = None):
        """Log an error with optional exception details."""
        if exception is not None:
            tb = "".join(traceback.format_exception(type(exception), exception, exception.__traceback__))
            self.loggers["error"].error(f"{message}\n{tb}")
        else:
            self.loggers["error"].error(message)

    def read_logs(self, log_type: str, max_lines: int = 1000, search_text: Optional[str] = None,
                  level_filter: Optional[str] = None) -> List[Dict]:
        """Read logs from the specified log file with optional filtering."""
        if log_type not in LOG_TYPES:
            raise ValueError(f"Unknown log type: {log_type}")
        log_file = self.log_dir / f"{log_type}.log"

        if not log_file.exists():
            return []

        try:
            with open(log_file, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            return [{
                "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
                "level": "ERROR",
                "message": f"Failed to read log file: {str(e)}"
            }]

        # Get the last N lines (most recent logs first)
        lines = lines[-max_lines:]

        processed_logs: List[Dict] = []
        for line in lines:
            # Expected format: '2025-09-10 12:34:56,789 - INFO - message'
            # or '2025-09-10 12:34:56,789 - INFO - module_name - message' for root logger
            parts = line.split(" - ", 3)
            if len(parts) >= 3:
                timestamp, level, message = parts[0], parts[1], parts[-1]

                if search_text and search_text.lower() not in line.lower():
                    continue
                if level_filter and level.strip() != level_filter:
                    continue

                processed_logs.append({
                    "timestamp": timestamp.strip(),
                    "level": level.strip(),
                    "message": message.strip()
                })
            elif processed_logs:
                # continuation line (tracebacks, pathname suffix)
                processed_logs[-1]["message"] += "\n" + line.strip()

        # Reverse to show newest at the top
        return list(reversed(processed_logs))


def get_log_manager() -> LogManager:
    """Get the log manager instance."""
    return LogManager.get_instance()


# Helper functions for easy logging
def log_system(message: str, level: str = "INFO"):
    """Log a system message."""
    get_log_manager().log_system(message, level)


def log_zoho(message: str, level: str = "INFO"):
    """Log a Zoho API related message."""
    get_log_manager().log_zoho(message, level)


def log_error(message: str, exception: Optional[BaseException] = None):
    """Log an error with optional exception details."""
    get_log_manager().log_error(message, exception)


def read_logs(log_type: str, max_lines: int = 1000, search_text: Optional[str] = None,
              level_filter: Optional[str] = None) -> List[Dict]:
    """Read logs from the specified log file with optional filtering."""
    return get_log_manager().read_logs(log_type, max_lines, search_text, level_filter)
