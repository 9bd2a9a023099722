"""
Workflow executor: runs a generated workflow through the automation engine
and walks a fixed fallback ladder when it fails.

Ladder (each rung at most once, in order):
  primary     full workflow, uploads included
  simplified  same fields, no uploads (human attaches files by hand)
  manual      only opens the appeal page; returns a step-by-step guide
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Union

from config import AutomationConfig, setup_logger
from errors import ExecutionError, VerificationTimeoutError
from models import EngineResult, ExecutionOutcome, GeneratedWorkflow
from process_locator import resolve_runner_command
from workflow_generator import open_page_only, render_manual_guide, simplify, write_workflow

logger = setup_logger("WorkflowExecutor")

RUNNER_SCRIPT = Path(__file__).resolve().parent / "workflow_runner.py"
EXIT_VERIFICATION_TIMEOUT = 20
VERIFICATION_TIMEOUT_MARKER = "VERIFICATION_TIMEOUT"
_DIAG_TAIL = 800


# -----------------------------------------------------------------------------
# Failure classification
# -----------------------------------------------------------------------------
_CAUSES = [
    (
        ("not found", "enoent", "no such file", "no module named", "is not recognized"),
        "Automation tool not found: install Playwright (pip install playwright && playwright install chromium) "
        "or set RG_RUNNER_PATH",
    ),
    (
        ("permission", "eacces", "access is denied", "eperm"),
        "Permission denied: check access to the document files and the work directory",
    ),
    (
        ("timeout", "timed out"),
        "Operation timed out: check your network connection and that the appeal page loads, then retry",
    ),
    (
        ("net::", "econnrefused", "econnreset", "connection", "network", "dns"),
        "Network error: check your network connection or proxy and that Chrome's debug port is reachable",
    ),
]


def classify_failure(text: str, exit_code: Optional[int] = None) -> str:
    low = (text or "").lower()
    for needles, cause in _CAUSES:
        if any(n in low for n in needles):
            return cause
    return f"Automation engine failed (exit code {exit_code})"


def is_verification_timeout(result: EngineResult) -> bool:
    return (
        not result.timed_out
        and result.exit_code == EXIT_VERIFICATION_TIMEOUT
        and VERIFICATION_TIMEOUT_MARKER in result.stdout
    )


def describe_failure(result: EngineResult) -> str:
    cause = classify_failure(result.diagnostics, result.exit_code)
    tail = result.diagnostics[-_DIAG_TAIL:]
    return f"{cause}\n{tail}" if tail else cause


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------
class Engine(Protocol):
    async def run(self, workflow_path: Path, timeout_s: float) -> EngineResult:
        ...


class SubprocessEngine:
    """Runs workflow_runner.py in a separate interpreter."""

    def __init__(self, runner_command: Optional[List[str]] = None, script: Path = RUNNER_SCRIPT):
        self.runner_command = runner_command
        self.script = Path(script)

    async def run(self, workflow_path: Path, timeout_s: float) -> EngineResult:
        cmd = list(self.runner_command or resolve_runner_command()) + [str(self.script), str(Path(workflow_path).resolve())]
        logger.info("[exec] %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.script.parent),
            )
        except OSError as e:
            raise ExecutionError(f"Could not start automation engine ({cmd[0]}): {e}") from e

        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            out, err = await proc.communicate()
            return EngineResult(
                exit_code=proc.returncode,
                stdout=out.decode("utf-8", "replace"),
                stderr=err.decode("utf-8", "replace") + f"\nengine timeout after {int(timeout_s)}s",
                timed_out=True,
            )
        except asyncio.CancelledError:
            proc.kill()
            raise

        stdout = out.decode("utf-8", "replace")
        stderr = err.decode("utf-8", "replace")
        logger.debug("[exec] engine stdout:\n%s", stdout)
        if stderr.strip():
            logger.warning("[exec] engine stderr:\n%s", stderr.strip())
        return EngineResult(exit_code=proc.returncode, stdout=stdout, stderr=stderr)


# -----------------------------------------------------------------------------
# Strategies
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Strategy:
    name: str
    transform: Callable[[GeneratedWorkflow], GeneratedWorkflow]
    manual: bool = False


DEFAULT_STRATEGIES: Sequence[Strategy] = (
    Strategy("primary", lambda wf: wf),
    Strategy("simplified", simplify),
    Strategy("manual", open_page_only, manual=True),
)


class WorkflowExecutor:
    def __init__(
        self,
        engine: Engine,
        *,
        work_dir: Union[str, Path],
        timeout_s: float = 300.0,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ):
        self.engine = engine
        self.work_dir = Path(work_dir)
        self.timeout_s = float(timeout_s)
        self.strategies = list(strategies)

    @classmethod
    def from_config(cls, config: AutomationConfig, engine: Optional[Engine] = None) -> "WorkflowExecutor":
        runner = [config.runner_path] if config.runner_path else None
        return cls(
            engine or SubprocessEngine(runner_command=runner),
            work_dir=config.work_dir,
            timeout_s=config.engine_timeout_s + config.verification_timeout_s,
        )

    async def run_once(self, strategy: Strategy, workflow: GeneratedWorkflow) -> EngineResult:
        variant = strategy.transform(workflow)
        path = self.work_dir / f"workflow_{strategy.name}.json"
        write_workflow(variant, path)
        try:
            return await self.engine.run(path, self.timeout_s)
        finally:
            path.unlink(missing_ok=True)

    async def execute(self, workflow: GeneratedWorkflow) -> ExecutionOutcome:
        failures: List[str] = []
        for strategy in self.strategies:
            logger.info("[exec] strategy=%s", strategy.name)
            result = await self.run_once(strategy, workflow)

            if result.ok:
                guide = render_manual_guide(workflow) if strategy.manual else None
                logger.info("[exec] strategy=%s succeeded", strategy.name)
                return ExecutionOutcome(
                    ok=True,
                    strategy=strategy.name,
                    message=f"{strategy.name} strategy completed",
                    manual_guide=guide,
                    failures=failures,
                )

            if is_verification_timeout(result):
                raise VerificationTimeoutError(
                    "Human verification was not completed in time; restart the appeal when ready"
                )

            msg = describe_failure(result)
            failures.append(f"[{strategy.name}] {msg}")
            logger.error("[exec] strategy=%s failed exit=%s: %s", strategy.name, result.exit_code, msg)

        raise ExecutionError("All automation strategies failed:\n" + "\n".join(failures))
