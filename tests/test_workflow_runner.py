"""Tests for workflow_runner.py against an in-memory page (no real browser)."""

from __future__ import annotations

import pytest
from playwright.sync_api import TimeoutError as PWTimeoutError
from pydantic import ValidationError

from models import Step
from verification_gate import VerificationGate
from workflow_runner import (
    EXIT_ATTACH_FAILED,
    EXIT_OK,
    EXIT_STEP_FAILED,
    EXIT_VERIFICATION_TIMEOUT,
    AppealFormRunner,
    Backoff,
    main,
)


class FakeLocator:
    def __init__(self, page, selector):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    def count(self):
        return 0 if self.selector in self.page.missing else 1

    def fill(self, value):
        if self.selector in self.page.failing:
            raise PWTimeoutError(f"Timeout 15000ms exceeded waiting for {self.selector}")
        self.page.actions.append(("fill", self.selector, value))

    def click(self):
        self.page.actions.append(("click", self.selector))

    def set_input_files(self, files):
        self.page.actions.append(("upload", self.selector, list(files)))


class FakePage:
    def __init__(self):
        self.url = "about:blank"
        self.actions = []
        self.failing = set()
        self.missing = set()
        self.waited_ms = 0

    def goto(self, url, wait_until=None):
        self.url = url
        self.actions.append(("goto", url))

    def locator(self, selector):
        return FakeLocator(self, selector)

    def wait_for_timeout(self, ms):
        self.waited_ms += ms


def _runner(workflow):
    r = AppealFormRunner(workflow, backoff=Backoff(max_retries=1, base_delay_s=0, max_delay_s=0))
    r._page = FakePage()
    return r


@pytest.fixture(autouse=True)
def no_delays(monkeypatch):
    import workflow_runner

    monkeypatch.setattr(workflow_runner.time, "sleep", lambda s: None)


@pytest.fixture
def workflow(generator, profile, ip_asset, request_a):
    return generator.generate(profile, ip_asset, request_a)


class TestRun:
    def test_full_run_after_signal(self, workflow):
        VerificationGate(workflow.gate_dir).signal_complete()
        runner = _runner(workflow)
        assert runner.run() == EXIT_OK

        actions = runner.page.actions
        assert actions[0] == ("goto", workflow.target_url)
        fills = [a[2] for a in actions if a[0] == "fill"]
        assert "张三 O'Brien" in fills
        assert "https://example.com/clip/1" in fills
        uploads = [a for a in actions if a[0] == "upload"]
        assert len(uploads) == 3

    def test_step_failure_exit_code(self, workflow, capsys):
        VerificationGate(workflow.gate_dir).signal_complete()
        runner = _runner(workflow)
        name_selector = workflow.stage("identity").steps[1].args["selector"]
        runner.page.failing.add(name_selector)
        assert runner.run() == EXIT_STEP_FAILED
        assert "timeout" in capsys.readouterr().err

    def test_missing_upload_input(self, workflow):
        VerificationGate(workflow.gate_dir).signal_complete()
        runner = _runner(workflow)
        runner.page.missing.add(workflow.stage("identity").steps[-1].args["selector"])
        assert runner.run() == EXIT_STEP_FAILED

    def test_verification_timeout(self, workflow, capsys):
        gate = VerificationGate(workflow.gate_dir)
        gate.reset()
        wf = workflow.model_copy(deep=True)
        wf.stage("verification").steps[0].args["timeout_s"] = 0
        runner = _runner(wf)
        assert runner.run() == EXIT_VERIFICATION_TIMEOUT
        assert "VERIFICATION_TIMEOUT" in capsys.readouterr().out.splitlines()


class TestMain:
    def test_usage(self):
        assert main([]) == EXIT_ATTACH_FAILED

    def test_unreadable_workflow(self, tmp_path):
        assert main([str(tmp_path / "missing.json")]) == EXIT_ATTACH_FAILED


class TestActions:
    def test_unknown_action_rejected_by_model(self):
        with pytest.raises(ValidationError):
            Step(id="s1", action="wait", args={"seconds": 1})

    def test_unknown_action_fails_step(self, workflow):
        runner = _runner(workflow)
        res = runner._do_action("wait", {"seconds": 1})
        assert res["ok"] is False
        assert "unknown action" in res["message"]
