"""
process_locator.py

Finds the external tools the automation depends on:
- a Chrome/Chromium binary that can be started with a debug port
- a Python interpreter to run the engine process (workflow_runner.py)
- the app-private browser profile directory
"""

from __future__ import annotations

import os
import platform
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from errors import ExecutionError, LaunchError


def _system() -> str:
    return platform.system()


def browser_candidates(system: Optional[str] = None) -> List[str]:
    system = system or _system()
    if system == "Windows":
        local = os.getenv("LOCALAPPDATA", "")
        paths = [
            r"C:\Program Files\Google\Chrome\Application\chrome.exe",
            r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
        ]
        if local:
            paths.append(str(Path(local) / "Google" / "Chrome" / "Application" / "chrome.exe"))
        return paths
    if system == "Darwin":
        return [
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
        ]
    return [
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/snap/bin/chromium",
    ]


def browser_process_names(system: Optional[str] = None) -> List[str]:
    system = system or _system()
    if system == "Windows":
        return ["chrome.exe"]
    if system == "Darwin":
        return ["Google Chrome", "Chromium"]
    return ["chrome", "google-chrome", "chromium", "chromium-browser"]


def find_browser_executable(configured: Optional[str] = None) -> str:
    """Return the first launchable browser binary.

    Resolution order:
      1) configured path (RG_BROWSER_PATH) if it exists
      2) well-known install locations for this OS
      3) google-chrome / chromium on PATH
    """
    if configured:
        if Path(configured).exists():
            return configured
        raise LaunchError(f"Configured browser not found: {configured}")

    candidates = browser_candidates()
    for p in candidates:
        if Path(p).exists():
            return p

    for name in ("google-chrome", "google-chrome-stable", "chromium", "chromium-browser", "chrome"):
        found = shutil.which(name)
        if found:
            return found

    raise LaunchError("Chrome executable not found. Searched: " + ", ".join(candidates))


def resolve_runner_command(configured: Optional[str] = None) -> List[str]:
    """Return the interpreter command used to run the engine process."""
    if configured:
        if Path(configured).exists() or shutil.which(configured):
            return [configured]
        raise ExecutionError(f"Configured runner not found: {configured}")

    cur = Path(sys.executable) if sys.executable else None
    if cur and cur.exists():
        return [str(cur)]

    for name in ("python3", "python"):
        if shutil.which(name):
            return [name]

    raise ExecutionError("No Python interpreter found to run the automation engine")


def default_user_data_dir(system: Optional[str] = None) -> Path:
    system = system or _system()
    home = Path.home()
    if system == "Windows":
        base = Path(os.getenv("LOCALAPPDATA") or (home / "AppData" / "Local"))
        return base / "RightsGuard" / "ChromeProfile"
    if system == "Darwin":
        return home / "Library" / "Application Support" / "RightsGuard" / "ChromeProfile"
    return home / ".config" / "rights-guard" / "chrome-profile"
