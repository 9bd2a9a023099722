from __future__ import annotations

"""
workflow_runner.py

Automation engine process. Attaches to the already-running debuggable Chrome
over CDP and executes an appeal_workflow.v1 JSON file step by step.

Usage:
    python workflow_runner.py <workflow.json>

Exit codes:
    0  all stages completed
    1  a step failed after its retries
    3  could not attach to the browser / bad workflow file
    20 human verification timed out; VERIFICATION_TIMEOUT is printed on stdout
       (2 belongs to the interpreter itself, e.g. "can't open file")
"""

import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from playwright.sync_api import Error as PWError
from playwright.sync_api import TimeoutError as PWTimeoutError
from playwright.sync_api import sync_playwright

from config import _env_int, setup_logger
from errors import (
    ERROR_CLICK,
    ERROR_FILL,
    ERROR_NAVIGATION,
    ERROR_NOT_FOUND,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
    ERROR_UPLOAD,
    ERROR_VERIFICATION_TIMEOUT,
    RETRYABLE_ERRORS,
    VerificationTimeoutError,
)
from models import GeneratedWorkflow, Step
from verification_gate import VerificationGate
from workflow_generator import read_workflow

logger = setup_logger("WorkflowRunner")

EXIT_OK = 0
EXIT_STEP_FAILED = 1
EXIT_ATTACH_FAILED = 3
EXIT_VERIFICATION_TIMEOUT = 20
VERIFICATION_TIMEOUT_MARKER = "VERIFICATION_TIMEOUT"


@dataclass
class Backoff:
    max_retries: int = 2
    base_delay_s: float = 0.25
    max_delay_s: float = 1.5

    def sleep(self, attempt: int) -> None:
        delay = min(self.max_delay_s, self.base_delay_s * (2 ** attempt))
        jitter = (attempt % 3) * 0.03
        time.sleep(delay + jitter)


class AppealFormRunner:
    """Executes workflow steps against the page of an attached Chrome."""

    def __init__(
        self,
        workflow: GeneratedWorkflow,
        *,
        default_timeout_ms: int = 15_000,
        navigation_timeout_ms: int = 60_000,
        backoff: Backoff = Backoff(),
    ):
        self.workflow = workflow
        self.default_timeout_ms = default_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self.backoff = backoff
        self.gate = VerificationGate(workflow.gate_dir)

        self._pw = None
        self._browser = None
        self._page = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def attach(self) -> None:
        logger.info("Attaching to %s", self.workflow.debug_endpoint)
        self._pw = sync_playwright().start()
        self._browser = self._pw.chromium.connect_over_cdp(self.workflow.debug_endpoint, timeout=15_000)
        context = self._browser.contexts[0] if self._browser.contexts else self._browser.new_context()
        self._page = context.pages[0] if context.pages else context.new_page()
        self._page.set_default_timeout(self.default_timeout_ms)
        self._page.set_default_navigation_timeout(self.navigation_timeout_ms)

    def detach(self) -> None:
        # Disconnects only; the Chrome process stays under the orchestrator's control.
        try:
            if self._browser:
                self._browser.close()
        except PWError as e:
            logger.warning("Detach failed: %s", e)
        finally:
            if self._pw:
                self._pw.stop()
            self._pw = self._browser = self._page = None

    @property
    def page(self):
        if not self._page:
            raise RuntimeError("Not attached. Call attach() first.")
        return self._page

    # -------------------------------------------------------------------------
    # Workflow
    # -------------------------------------------------------------------------
    def run(self) -> int:
        for stage in self.workflow.stages:
            logger.info("=== stage %s (%d steps) ===", stage.name, len(stage.steps))
            for step in stage.steps:
                res = self.run_step(step)
                if res["ok"]:
                    if step.delay_after > 0:
                        time.sleep(step.delay_after)
                    continue
                print(
                    f"step {step.id} failed [{res['error_type']}]: {res['message']}",
                    file=sys.stderr,
                )
                if res["error_type"] == ERROR_VERIFICATION_TIMEOUT:
                    print(VERIFICATION_TIMEOUT_MARKER, flush=True)
                    return EXIT_VERIFICATION_TIMEOUT
                return EXIT_STEP_FAILED
        logger.info("All stages completed")
        return EXIT_OK

    def run_step(self, step: Step) -> Dict[str, Any]:
        args = step.args
        max_retries = max(0, min(int(step.retries), self.backoff.max_retries))
        logger.info("step %s action=%s (%s)", step.id, step.action, step.description)

        last: Optional[Dict[str, Any]] = None
        for attempt in range(max_retries + 1):
            res = self._do_action(step.action, args)
            if res["ok"]:
                res["attempt"] = attempt + 1
                return res
            last = res
            logger.warning("attempt %d/%d failed: %s", attempt + 1, max_retries + 1, res["message"])
            if res["error_type"] in RETRYABLE_ERRORS and attempt < max_retries:
                self.backoff.sleep(attempt)
                continue
            break

        last = last or self._fail(ERROR_UNKNOWN, "unknown failure", time.time())
        last["attempt"] = max_retries + 1
        return last

    def _do_action(self, action: str, args: Dict[str, Any]) -> Dict[str, Any]:
        if action == "goto":
            return self.goto(args["url"])
        if action == "fill":
            return self.fill(args["selector"], args.get("value", ""))
        if action == "click":
            return self.click(args["selector"])
        if action == "select":
            return self.select(args["selector"], args["option_selector"])
        if action == "upload":
            return self.upload(args["selector"], args.get("files") or [])
        if action == "wait_for_verification":
            return self.wait_for_verification(float(args.get("timeout_s", self.workflow.verification_timeout_s)))
        return self._fail(ERROR_UNKNOWN, f"unknown action: {action}", time.time())

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------
    def goto(self, url: str) -> Dict[str, Any]:
        t0 = time.time()
        try:
            self.page.goto(url, wait_until="networkidle")
            return self._ok(f"goto ok: {self.page.url}", t0)
        except PWTimeoutError as e:
            return self._fail(ERROR_TIMEOUT, f"goto timeout: {e}", t0)
        except PWError as e:
            return self._fail(ERROR_NAVIGATION, f"goto navigation error: {e}", t0)

    def fill(self, selector: str, value: str) -> Dict[str, Any]:
        t0 = time.time()
        try:
            self.page.locator(selector).first.fill(value)
            return self._ok("fill ok", t0)
        except PWTimeoutError as e:
            return self._fail(ERROR_TIMEOUT, f"fill timeout on {selector}: {e}", t0)
        except PWError as e:
            return self._fail(ERROR_FILL, f"fill error on {selector}: {e}", t0)

    def click(self, selector: str) -> Dict[str, Any]:
        t0 = time.time()
        try:
            self.page.locator(selector).first.click()
            return self._ok("click ok", t0)
        except PWTimeoutError as e:
            return self._fail(ERROR_TIMEOUT, f"click timeout on {selector}: {e}", t0)
        except PWError as e:
            return self._fail(ERROR_CLICK, f"click error on {selector}: {e}", t0)

    def select(self, selector: str, option_selector: str) -> Dict[str, Any]:
        t0 = time.time()
        try:
            self.page.locator(selector).first.click()
            self.page.wait_for_timeout(500)
            self.page.locator(option_selector).first.click()
            return self._ok("select ok", t0)
        except PWTimeoutError as e:
            return self._fail(ERROR_TIMEOUT, f"select timeout on {selector}: {e}", t0)
        except PWError as e:
            return self._fail(ERROR_CLICK, f"select error on {selector}: {e}", t0)

    def upload(self, selector: str, files: List[str]) -> Dict[str, Any]:
        t0 = time.time()
        if not files:
            return self._ok("upload skipped (no files)", t0)
        try:
            inputs = self.page.locator(selector)
            if inputs.count() == 0:
                return self._fail(ERROR_NOT_FOUND, f"no file input matches {selector}", t0)
            inputs.first.set_input_files(files)
            return self._ok(f"uploaded {len(files)} file(s)", t0)
        except PWTimeoutError as e:
            return self._fail(ERROR_TIMEOUT, f"upload timeout on {selector}: {e}", t0)
        except PWError as e:
            return self._fail(ERROR_UPLOAD, f"upload error on {selector}: {e}", t0)

    def wait_for_verification(self, timeout_s: float) -> Dict[str, Any]:
        t0 = time.time()
        print("WAITING_FOR_VERIFICATION", flush=True)
        try:
            self.gate.wait_for_completion(
                timeout_s,
                poll_s=1.0,
                sleep=lambda s: self.page.wait_for_timeout(int(s * 1000)),
            )
        except VerificationTimeoutError as e:
            return self._fail(ERROR_VERIFICATION_TIMEOUT, f"verification timeout: {e}", t0)
        return self._ok("verification completed", t0)

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------
    def _ok(self, message: str, t0: float) -> Dict[str, Any]:
        return {
            "ok": True,
            "error_type": None,
            "message": message,
            "url": self._page.url if self._page else "",
            "timing_ms": int((time.time() - t0) * 1000),
        }

    def _fail(self, error_type: str, message: str, t0: float) -> Dict[str, Any]:
        url = ""
        try:
            if self._page:
                url = self._page.url
        except PWError:
            pass
        return {
            "ok": False,
            "error_type": error_type,
            "message": message,
            "url": url,
            "timing_ms": int((time.time() - t0) * 1000),
        }


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------
def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if len(argv) != 1:
        print("usage: workflow_runner.py <workflow.json>", file=sys.stderr)
        return EXIT_ATTACH_FAILED

    try:
        workflow = read_workflow(argv[0])
    except (OSError, ValueError) as e:
        print(f"cannot read workflow {argv[0]}: {e}", file=sys.stderr)
        return EXIT_ATTACH_FAILED

    runner = AppealFormRunner(
        workflow,
        default_timeout_ms=_env_int("RG_STEP_TIMEOUT_MS", 15_000),
        backoff=Backoff(max_retries=_env_int("RG_STEP_MAX_RETRIES", 2)),
    )
    try:
        runner.attach()
    except PWError as e:
        print(f"connection to browser failed (ECONNREFUSED?): {e}", file=sys.stderr)
        runner.detach()
        return EXIT_ATTACH_FAILED

    try:
        return runner.run()
    finally:
        runner.detach()


if __name__ == "__main__":
    sys.exit(main())
