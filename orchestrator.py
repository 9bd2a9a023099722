from __future__ import annotations

"""
orchestrator.py

Appeal automation orchestrator.

This orchestrator:
- guards a single run at a time (start() while running -> AlreadyRunningError)
- loads profile + optional IP asset, generates the workflow, makes sure a
  debuggable Chrome is up, then hands the workflow to the executor
- reports progress only through the StatusStore (fire-and-forget start + poll)
- always releases the owned Chrome process when a run ends

Logging policy:
- INFO: run/step-level progress
- DEBUG: optional details (enable via RG_LOG_LEVEL=DEBUG)
"""

import asyncio
import importlib.util
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from browser_session import BrowserSessionManager
from config import AutomationConfig, setup_logger
from errors import AlreadyRunningError, AutomationError, PreconditionMissingError
from models import AppealRequest, ExecutionOutcome, GeneratedWorkflow, RunStatus
from process_locator import find_browser_executable, resolve_runner_command
from repository import JsonRepository
from verification_gate import GateState, VerificationGate
from workflow_executor import WorkflowExecutor
from workflow_generator import WorkflowGenerator

logger = setup_logger("AppealOrchestrator")

STEP_INITIALIZING = "initializing"
STEP_WAITING_VERIFICATION = "waiting for verification"
STEP_COMPLETED = "completed"
STEP_FAILED = "failed"
STEP_STOPPED = "stopped"


# -----------------------------------------------------------------------------
# Status store
# -----------------------------------------------------------------------------
class StatusStore:
    """Single RunStatus guarded by a lock. Every read returns a copy.

    begin() hands out a run token; finish_* calls carrying a stale token
    (the run was stopped, or a newer run started) are ignored.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = RunStatus()
        self._token = 0

    def snapshot(self) -> RunStatus:
        with self._lock:
            return self._status.model_copy()

    def begin(self) -> int:
        with self._lock:
            if self._status.is_running:
                raise AlreadyRunningError()
            self._token += 1
            self._status = RunStatus(
                is_running=True,
                current_step=STEP_INITIALIZING,
                progress=0,
                error=None,
                started_at=datetime.now(timezone.utc),
            )
            return self._token

    def is_current(self, token: int) -> bool:
        with self._lock:
            return token == self._token and self._status.is_running

    def update(self, token: int, step: str, progress: Optional[float] = None) -> None:
        with self._lock:
            if token != self._token or not self._status.is_running:
                return
            self._status.current_step = step
            if progress is not None:
                self._status.progress = progress

    def finish_success(self, token: int, step: str = STEP_COMPLETED) -> None:
        with self._lock:
            if token != self._token or not self._status.is_running:
                return
            self._status.is_running = False
            self._status.current_step = step
            self._status.progress = 100
            self._status.error = None

    def finish_failure(self, token: int, error: str) -> None:
        with self._lock:
            if token != self._token or not self._status.is_running:
                return
            self._status.is_running = False
            self._status.current_step = STEP_FAILED
            self._status.error = (error or "").strip() or "Automation failed for an unknown reason"

    def mark_stopped(self) -> None:
        with self._lock:
            self._status.is_running = False
            self._status.current_step = STEP_STOPPED


def format_error(e: BaseException) -> str:
    if isinstance(e, AutomationError):
        return str(e) or type(e).__name__
    return f"{type(e).__name__}: {e}" if str(e) else type(e).__name__


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------
class AppealOrchestrator:
    def __init__(
        self,
        *,
        repository: JsonRepository,
        session_manager: BrowserSessionManager,
        generator: WorkflowGenerator,
        executor: WorkflowExecutor,
        gate: VerificationGate,
        status_store: StatusStore,
        config: AutomationConfig,
        gate_poll_s: float = 0.5,
    ):
        self.repository = repository
        self.session = session_manager
        self.generator = generator
        self.executor = executor
        self.gate = gate
        self.store = status_store
        self.config = config
        self.gate_poll_s = float(gate_poll_s)
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: AutomationConfig) -> "AppealOrchestrator":
        gate_dir = config.work_dir / "gate"
        return cls(
            repository=JsonRepository(config.resolved_data_dir),
            session_manager=BrowserSessionManager(config),
            generator=WorkflowGenerator.from_config(config, gate_dir),
            executor=WorkflowExecutor.from_config(config),
            gate=VerificationGate(gate_dir),
            status_store=StatusStore(),
            config=config,
        )

    # -------------------------
    # Public API
    # -------------------------
    async def start(self, request: AppealRequest) -> None:
        if self._task is not None and not self._task.done():
            raise AlreadyRunningError("Previous automation run is still shutting down")
        token = self.store.begin()
        self.gate.reset()
        logger.info("[orch] start token=%d url=%s ip_asset=%s", token, request.infringing_url, request.ip_asset_id)
        self._task = asyncio.get_running_loop().create_task(self._run(token, request))

    async def stop(self) -> None:
        """Mark the run stopped, cancel its task (killing the engine child) and release Chrome.

        Returns only after the cancelled task has finished its own cleanup, so a
        following start() never shares the browser or the gate with it.
        """
        logger.info("[orch] stop requested")
        self.store.mark_stopped()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        self.session.release()

    def status(self) -> RunStatus:
        return self.store.snapshot()

    def signal_verification_complete(self) -> None:
        self.gate.signal_complete()

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.wait({self._task})

    # -------------------------
    # Run body
    # -------------------------
    async def _run(self, token: int, request: AppealRequest) -> None:
        try:
            self.store.update(token, "loading profile", 5)
            profile = self.repository.get_profile()
            if profile is None:
                raise PreconditionMissingError("No profile configured; fill in your personal profile first")

            ip_asset = None
            if request.ip_asset_id:
                ip_asset = self.repository.get_ip_asset(request.ip_asset_id)
                if ip_asset is None:
                    raise PreconditionMissingError(f"IP asset not found: {request.ip_asset_id}")

            self.store.update(token, "generating workflow", 10)
            workflow = self.generator.generate(profile, ip_asset, request)

            self.store.update(token, "launching browser", 20)
            await self.session.ensure_debuggable_session()

            self.store.update(token, "running automation", 35)
            outcome = await self._execute_watching_gate(token, workflow)
            if not self.store.is_current(token):
                logger.info("[orch] run was stopped, discarding %s outcome", outcome.strategy)
                return

            self.store.update(token, "saving case record", 90)
            self.repository.save_case_record(request, "manual" if outcome.manual_guide else "submitted")

            if outcome.manual_guide:
                guide_path = self._write_guide(outcome.manual_guide)
                self.store.finish_success(token, f"manual guidance ready: {guide_path}")
            else:
                self.store.finish_success(token, STEP_COMPLETED)
            logger.info("[orch] done strategy=%s", outcome.strategy)

        except asyncio.CancelledError:
            self.store.finish_failure(token, "Automation run was cancelled")
            raise
        except Exception as e:
            msg = format_error(e)
            logger.error("[orch] run failed: %s", msg)
            self.store.finish_failure(token, msg)
        finally:
            self.session.release()

    async def _execute_watching_gate(self, token: int, workflow: GeneratedWorkflow) -> ExecutionOutcome:
        watcher = asyncio.get_running_loop().create_task(self._watch_gate(token))
        try:
            return await self.executor.execute(workflow)
        finally:
            watcher.cancel()
            try:
                await watcher
            except asyncio.CancelledError:
                pass

    async def _watch_gate(self, token: int) -> None:
        seen = GateState.RESET
        while True:
            state = self.gate.state
            if state != seen:
                seen = state
                if state == GateState.WAITING:
                    logger.info("[orch] waiting for human verification")
                    self.store.update(token, STEP_WAITING_VERIFICATION, 40)
                elif state == GateState.COMPLETED:
                    self.store.update(token, "filling appeal form", 60)
            await asyncio.sleep(self.gate_poll_s)

    def _write_guide(self, guide: str) -> Path:
        path = self.config.work_dir / "manual_guide.txt"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(guide, encoding="utf-8")
        logger.info("[orch] manual guide written to %s", path)
        return path

    # -------------------------
    # Diagnostics
    # -------------------------
    def check_environment(self) -> str:
        lines: List[str] = ["Environment check"]

        def _line(ok: bool, label: str, detail: str) -> None:
            lines.append(f"  {'✓' if ok else '✗'} {label}: {detail}")

        try:
            _line(True, "Chrome", find_browser_executable(self.config.browser_path))
        except AutomationError as e:
            _line(False, "Chrome", str(e))

        try:
            runner = [self.config.runner_path] if self.config.runner_path else resolve_runner_command()
            _line(True, "Engine interpreter", " ".join(runner))
        except AutomationError as e:
            _line(False, "Engine interpreter", str(e))

        has_pw = importlib.util.find_spec("playwright") is not None
        _line(has_pw, "Playwright", "installed" if has_pw else "missing (pip install playwright)")

        live = self.session.probe_sync()
        _line(live, "Debug endpoint", f"{self.config.debug_endpoint} {'reachable' if live else 'not running'}")

        for label, d in (("Browser profile dir", self.session.user_data_dir), ("Work dir", self.config.work_dir)):
            ok, detail = _writable(Path(d))
            _line(ok, label, detail)

        profile = self.repository.get_profile()
        if profile is None:
            _line(False, "Profile", "not configured")
        else:
            _line(bool(profile.id_card_files), "Profile", f"{profile.name or '?'} ({len(profile.id_card_files)} ID file(s))")

        return "\n".join(lines)


def _writable(d: Path) -> Tuple[bool, str]:
    try:
        d.mkdir(parents=True, exist_ok=True)
        probe = d / ".write_test.tmp"
        probe.write_text("test", encoding="utf-8")
        probe.unlink()
        return True, str(d)
    except OSError as e:
        return False, f"{d} ({e})"
