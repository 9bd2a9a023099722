"""Tests for browser_session.py: reuse, relaunch and release of the debuggable Chrome."""

from __future__ import annotations

import asyncio

import psutil
import pytest

import browser_session
from browser_session import BrowserSessionManager
from errors import BrowserTimeoutError, LaunchError


class FakeProcess:
    def __init__(self, pid: int = 4242):
        self.pid = pid
        self.killed = 0

    def kill(self) -> None:
        self.killed += 1


class FakePsProcess:
    """Stands in for psutil.Process as yielded by process_iter(["name", "pid"])."""

    def __init__(self, pid: int, name, error: Exception = None):
        self.pid = pid
        self.info = {"name": name, "pid": pid}
        self.error = error
        self.kill_calls = 0
        self.killed = False

    def kill(self) -> None:
        self.kill_calls += 1
        if self.error is not None:
            raise self.error
        self.killed = True


class PopenSpy:
    def __init__(self):
        self.calls = []
        self.processes = []

    def __call__(self, args, **kwargs):
        self.calls.append(args)
        proc = FakeProcess(pid=1000 + len(self.calls))
        self.processes.append(proc)
        return proc


@pytest.fixture
def popen():
    return PopenSpy()


@pytest.fixture
def manager(config, popen, monkeypatch):
    monkeypatch.setattr(browser_session, "find_browser_executable", lambda configured=None: "/opt/chrome")
    return BrowserSessionManager(config, popen=popen)


def _probe_sequence(monkeypatch, manager, values):
    seq = list(values)

    def fake_probe():
        return seq.pop(0) if seq else values[-1]

    monkeypatch.setattr(manager, "probe_sync", fake_probe)


class TestReuse:
    @pytest.mark.asyncio
    async def test_scenario_c_reachable_port_skips_spawn(self, manager, popen, monkeypatch):
        _probe_sequence(monkeypatch, manager, [True])
        monkeypatch.setattr(manager, "is_browser_running", lambda: pytest.fail("must not scan processes"))
        await manager.ensure_debuggable_session()
        assert popen.calls == []
        assert not manager.owns_process


class TestLaunch:
    @pytest.mark.asyncio
    async def test_spawns_with_debug_flags(self, manager, popen, config, monkeypatch):
        _probe_sequence(monkeypatch, manager, [False, False, True])
        monkeypatch.setattr(manager, "is_browser_running", lambda: False)
        config.debug_poll_interval_s = 0
        await manager.ensure_debuggable_session()

        assert len(popen.calls) == 1
        args = popen.calls[0]
        assert args[0] == "/opt/chrome"
        assert f"--remote-debugging-port={config.debug_port}" in args
        assert f"--user-data-dir={config.user_data_dir}" in args
        assert manager.owns_process
        assert config.user_data_dir.is_dir()

    @pytest.mark.asyncio
    async def test_kills_foreign_browser_first(self, manager, popen, monkeypatch):
        _probe_sequence(monkeypatch, manager, [False, True])
        closed = []
        monkeypatch.setattr(manager, "is_browser_running", lambda: True)
        monkeypatch.setattr(manager, "close_existing_browser", lambda: closed.append(True) or 1)
        await manager.ensure_debuggable_session()
        assert closed == [True]
        assert len(popen.calls) == 1

    @pytest.mark.asyncio
    async def test_foreign_scan_kills_and_settles(self, manager, popen, config, monkeypatch):
        owned = FakeProcess(pid=77)
        manager._process = owned
        procs = [
            FakePsProcess(101, "Chrome"),
            FakePsProcess(102, "chrome", error=psutil.NoSuchProcess(102)),
            FakePsProcess(103, "firefox"),
            FakePsProcess(77, "chrome"),
            FakePsProcess(104, None),
        ]
        monkeypatch.setattr(browser_session, "browser_process_names", lambda: ["chrome", "chromium"])
        monkeypatch.setattr(browser_session.psutil, "process_iter", lambda attrs=None: iter(procs))

        slept = []
        real_sleep = asyncio.sleep

        async def fake_sleep(delay):
            slept.append(delay)
            await real_sleep(0)

        monkeypatch.setattr(browser_session.asyncio, "sleep", fake_sleep)
        _probe_sequence(monkeypatch, manager, [False, True])
        config.settle_s = 1.5

        assert manager.is_browser_running()
        await manager.ensure_debuggable_session()

        assert [p.pid for p in procs if p.kill_calls] == [101, 102]
        assert procs[0].killed and not procs[1].killed
        assert not procs[2].kill_calls and not procs[3].kill_calls
        assert slept[0] == 1.5
        assert owned.killed == 1
        assert len(popen.calls) == 1

    def test_close_existing_tolerates_vanished_and_denied(self, manager, monkeypatch):
        procs = [
            FakePsProcess(201, "chrome", error=psutil.AccessDenied(201)),
            FakePsProcess(202, "chrome", error=psutil.NoSuchProcess(202)),
            FakePsProcess(203, "chromium"),
        ]
        monkeypatch.setattr(browser_session, "browser_process_names", lambda: ["chrome", "chromium"])
        monkeypatch.setattr(browser_session.psutil, "process_iter", lambda attrs=None: iter(procs))
        assert manager.close_existing_browser() == 1

    @pytest.mark.asyncio
    async def test_debug_port_timeout(self, manager, config, monkeypatch):
        _probe_sequence(monkeypatch, manager, [False])
        monkeypatch.setattr(manager, "is_browser_running", lambda: False)
        config.debug_port_timeout_s = 0.05
        config.debug_poll_interval_s = 0.01
        with pytest.raises(BrowserTimeoutError) as ei:
            await manager.ensure_debuggable_session()
        assert isinstance(ei.value, LaunchError)
        assert isinstance(ei.value, TimeoutError)

    @pytest.mark.asyncio
    async def test_missing_browser(self, config, popen, monkeypatch):
        def not_found(configured=None):
            raise LaunchError("Chrome executable not found")

        monkeypatch.setattr(browser_session, "find_browser_executable", not_found)
        mgr = BrowserSessionManager(config, popen=popen)
        _probe_sequence(monkeypatch, mgr, [False])
        monkeypatch.setattr(mgr, "is_browser_running", lambda: False)
        with pytest.raises(LaunchError, match="not found"):
            await mgr.ensure_debuggable_session()
        assert popen.calls == []


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_kills_owned_process(self, manager, popen, monkeypatch):
        _probe_sequence(monkeypatch, manager, [False, True])
        monkeypatch.setattr(manager, "is_browser_running", lambda: False)
        await manager.ensure_debuggable_session()
        manager.release()
        assert popen.processes[0].killed == 1
        assert not manager.owns_process

    def test_release_without_process_is_noop(self, manager):
        manager.release()
        manager.release()
        assert not manager.owns_process
