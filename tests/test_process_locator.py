"""Tests for process_locator.py."""

from __future__ import annotations

import sys

import pytest

import process_locator
from errors import ExecutionError, LaunchError
from process_locator import (
    browser_process_names,
    default_user_data_dir,
    find_browser_executable,
    resolve_runner_command,
)


class TestBrowser:
    def test_configured_path(self, tmp_path):
        exe = tmp_path / "chrome"
        exe.write_text("")
        assert find_browser_executable(str(exe)) == str(exe)

    def test_configured_path_missing(self, tmp_path):
        with pytest.raises(LaunchError, match="Configured browser"):
            find_browser_executable(str(tmp_path / "nope"))

    def test_first_existing_candidate(self, tmp_path, monkeypatch):
        second = tmp_path / "b" / "chrome"
        second.parent.mkdir()
        second.write_text("")
        monkeypatch.setattr(process_locator, "browser_candidates", lambda: [str(tmp_path / "a"), str(second)])
        assert find_browser_executable() == str(second)

    def test_nothing_found(self, monkeypatch):
        monkeypatch.setattr(process_locator, "browser_candidates", lambda: ["/definitely/not/here"])
        monkeypatch.setattr(process_locator.shutil, "which", lambda name: None)
        with pytest.raises(LaunchError, match="/definitely/not/here"):
            find_browser_executable()

    @pytest.mark.parametrize("system, expected", [("Windows", "chrome.exe"), ("Darwin", "Google Chrome"), ("Linux", "chrome")])
    def test_process_names(self, system, expected):
        assert expected in browser_process_names(system)


class TestRunner:
    def test_defaults_to_current_interpreter(self):
        assert resolve_runner_command() == [sys.executable]

    def test_configured_missing(self, monkeypatch):
        monkeypatch.setattr(process_locator.shutil, "which", lambda name: None)
        with pytest.raises(ExecutionError):
            resolve_runner_command("/no/such/python")


class TestUserDataDir:
    @pytest.mark.parametrize("system, fragment", [("Darwin", "RightsGuard"), ("Linux", "rights-guard")])
    def test_app_private_dir(self, system, fragment):
        d = default_user_data_dir(system)
        assert fragment in str(d)
        assert "Google" not in str(d)
