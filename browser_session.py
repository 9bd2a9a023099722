from __future__ import annotations

"""
browser_session.py

Keeps exactly one debuggable Chrome around for the engine to attach to.

Policy:
- probe first: a live debug endpoint is reused, never relaunched
- a Chrome running WITHOUT the debug port holds the profile lock, so it is
  killed and given a short settle interval before we launch our own
- our Chrome always runs on an app-private --user-data-dir
- the spawned process handle is owned here and killed by release()
"""

import asyncio
import socket
import subprocess
import threading
import time
from pathlib import Path
from typing import Any, Callable, List, Optional

import psutil
import requests

from config import AutomationConfig, setup_logger
from errors import BrowserTimeoutError, LaunchError
from process_locator import browser_process_names, default_user_data_dir, find_browser_executable

logger = setup_logger("BrowserSession")


class BrowserSessionManager:
    def __init__(
        self,
        config: AutomationConfig,
        *,
        popen: Callable[..., Any] = subprocess.Popen,
    ):
        self.config = config
        self._popen = popen
        self._lock = threading.Lock()
        self._process: Optional[Any] = None

    # -------------------------
    # Probe
    # -------------------------
    def _tcp_open(self) -> bool:
        try:
            with socket.create_connection((self.config.debug_host, self.config.debug_port), timeout=1.0):
                return True
        except OSError:
            return False

    def _debug_api_ok(self) -> bool:
        url = f"{self.config.debug_endpoint}/json/version"
        try:
            r = requests.get(url, timeout=5)
        except requests.RequestException:
            return False
        return r.ok

    def probe_sync(self) -> bool:
        return self._tcp_open() and self._debug_api_ok()

    async def probe(self) -> bool:
        return await asyncio.to_thread(self.probe_sync)

    # -------------------------
    # Foreign browser processes
    # -------------------------
    def _foreign_browser_processes(self) -> List[psutil.Process]:
        names = {n.lower() for n in browser_process_names()}
        with self._lock:
            owned_pid = self._process.pid if self._process is not None else None
        found = []
        for p in psutil.process_iter(["name", "pid"]):
            name = (p.info.get("name") or "").lower()
            if name in names and p.info.get("pid") != owned_pid:
                found.append(p)
        return found

    def is_browser_running(self) -> bool:
        return bool(self._foreign_browser_processes())

    def close_existing_browser(self) -> int:
        killed = 0
        for p in self._foreign_browser_processes():
            try:
                p.kill()
                killed += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                logger.warning("[session] could not kill pid=%s: %s", p.pid, e)
        logger.info("[session] killed %d browser process(es) without debug port", killed)
        return killed

    # -------------------------
    # Launch
    # -------------------------
    @property
    def user_data_dir(self) -> Path:
        return Path(self.config.user_data_dir or default_user_data_dir())

    def launch_args(self, executable: str) -> List[str]:
        return [
            executable,
            f"--remote-debugging-port={self.config.debug_port}",
            f"--user-data-dir={self.user_data_dir}",
            "--no-first-run",
            "--no-default-browser-check",
        ]

    def _spawn(self) -> None:
        executable = find_browser_executable(self.config.browser_path)
        self.user_data_dir.mkdir(parents=True, exist_ok=True)
        args = self.launch_args(executable)
        logger.info("[session] launching %s", " ".join(args))
        with self._lock:
            if self._process is not None:
                self._kill_owned_locked()
            try:
                self._process = self._popen(
                    args,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as e:
                raise LaunchError(f"Failed to start Chrome ({executable}): {e}") from e

    async def wait_for_debug_port(self) -> None:
        timeout = float(self.config.debug_port_timeout_s)
        t0 = time.monotonic()
        while True:
            if await self.probe():
                logger.info("[session] debug endpoint up after %.1fs", time.monotonic() - t0)
                return
            if time.monotonic() - t0 > timeout:
                raise BrowserTimeoutError(
                    f"Timed out waiting for Chrome debug port {self.config.debug_port} ({int(timeout)}s)"
                )
            await asyncio.sleep(self.config.debug_poll_interval_s)

    async def ensure_debuggable_session(self) -> None:
        if await self.probe():
            logger.info("[session] reusing debug endpoint %s", self.config.debug_endpoint)
            return

        if await asyncio.to_thread(self.is_browser_running):
            await asyncio.to_thread(self.close_existing_browser)
            await asyncio.sleep(self.config.settle_s)

        self._spawn()
        await self.wait_for_debug_port()

    # -------------------------
    # Release
    # -------------------------
    @property
    def owns_process(self) -> bool:
        with self._lock:
            return self._process is not None

    def _kill_owned_locked(self) -> None:
        proc, self._process = self._process, None
        if proc is None:
            return
        try:
            proc.kill()
            logger.info("[session] killed owned Chrome pid=%s", getattr(proc, "pid", "?"))
        except OSError as e:
            logger.warning("[session] failed to kill owned Chrome: %s", e)

    def release(self) -> None:
        with self._lock:
            self._kill_owned_locked()
