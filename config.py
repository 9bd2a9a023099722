from __future__ import annotations

"""
config.py

Runtime configuration for the appeal automation.

All knobs come from the environment (optionally a .env file next to the app).
Defaults mirror what has worked in practice:
- debug port wait: 30s
- verification (CAPTCHA/SMS) wait: 10 minutes
- engine wall-clock timeout: 5 minutes
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


# -----------------------------------------------------------------------------
# Env helpers
# -----------------------------------------------------------------------------
def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip()


def _env_path(name: str) -> Optional[Path]:
    v = _env_str(name, "")
    return Path(v).expanduser() if v else None


# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
def _parse_log_level(s: str, default: int = logging.INFO) -> int:
    if not s:
        return default
    s = s.strip().upper()
    return {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }.get(s, default)


def setup_logger(name: str) -> logging.Logger:
    level = _parse_log_level(_env_str("RG_LOG_LEVEL", "INFO"), default=logging.INFO)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger
    ch = logging.StreamHandler()
    ch.setLevel(level)
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    ch.setFormatter(formatter)
    logger.addHandler(ch)
    return logger


# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------
DEFAULT_APPEAL_URL = "https://www.bilibili.com/v/copyright/apply?origin=home"


@dataclass
class AutomationConfig:
    debug_host: str = "127.0.0.1"
    debug_port: int = 9222
    debug_port_timeout_s: float = 30.0
    debug_poll_interval_s: float = 0.5
    verification_timeout_s: float = 600.0
    verification_poll_s: float = 1.0
    settle_s: float = 2.0
    engine_timeout_s: float = 300.0

    browser_path: Optional[str] = None
    runner_path: Optional[str] = None
    user_data_dir: Optional[Path] = None

    work_dir: Path = field(default_factory=lambda: Path(".rightsguard"))
    data_dir: Optional[Path] = None
    files_root: Optional[Path] = None

    appeal_url: str = DEFAULT_APPEAL_URL
    auto_submit: bool = False

    @property
    def debug_endpoint(self) -> str:
        return f"http://{self.debug_host}:{self.debug_port}"

    @property
    def resolved_data_dir(self) -> Path:
        return self.data_dir or (self.work_dir / "data")

    @property
    def resolved_files_root(self) -> Path:
        return self.files_root or (self.resolved_data_dir / "files")

    @classmethod
    def from_env(cls) -> "AutomationConfig":
        return cls(
            debug_host=_env_str("RG_DEBUG_HOST", "127.0.0.1"),
            debug_port=_env_int("RG_DEBUG_PORT", 9222),
            debug_port_timeout_s=_env_float("RG_DEBUG_PORT_TIMEOUT_S", 30.0),
            verification_timeout_s=_env_float("RG_VERIFICATION_TIMEOUT_S", 600.0),
            settle_s=_env_float("RG_SETTLE_S", 2.0),
            engine_timeout_s=_env_float("RG_ENGINE_TIMEOUT_S", 300.0),
            browser_path=_env_str("RG_BROWSER_PATH", "") or None,
            runner_path=_env_str("RG_RUNNER_PATH", "") or None,
            user_data_dir=_env_path("RG_USER_DATA_DIR"),
            work_dir=_env_path("RG_WORK_DIR") or Path(".rightsguard"),
            data_dir=_env_path("RG_DATA_DIR"),
            files_root=_env_path("RG_FILES_ROOT"),
            appeal_url=_env_str("RG_APPEAL_URL", DEFAULT_APPEAL_URL),
            auto_submit=_env_bool("RG_AUTO_SUBMIT", False),
        )
