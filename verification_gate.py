"""
verification_gate.py

Cross-process latch for the human verification step (CAPTCHA / SMS).

The engine process blocks in wait_for_completion() while the orchestrator
process (or a second CLI invocation) calls signal_complete(). Two sentinel
files live in the gate directory:

  waiting_for_verification.txt   engine reached the verification stage
  verification_completed.txt     human finished, engine may proceed

reset() clears both at the start of every run.
"""

from __future__ import annotations

import time
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from config import setup_logger
from errors import VerificationTimeoutError

logger = setup_logger("VerificationGate")

WAITING_FILE = "waiting_for_verification.txt"
COMPLETED_FILE = "verification_completed.txt"


class GateState(str, Enum):
    RESET = "reset"
    WAITING = "waiting"
    COMPLETED = "completed"


class VerificationGate:
    def __init__(self, gate_dir: Union[str, Path]):
        self.gate_dir = Path(gate_dir)

    @property
    def waiting_path(self) -> Path:
        return self.gate_dir / WAITING_FILE

    @property
    def completed_path(self) -> Path:
        return self.gate_dir / COMPLETED_FILE

    @property
    def state(self) -> GateState:
        if self.completed_path.exists():
            return GateState.COMPLETED
        if self.waiting_path.exists():
            return GateState.WAITING
        return GateState.RESET

    def reset(self) -> None:
        self.gate_dir.mkdir(parents=True, exist_ok=True)
        for p in (self.waiting_path, self.completed_path):
            p.unlink(missing_ok=True)
        logger.debug("[gate] reset %s", self.gate_dir)

    def mark_waiting(self) -> None:
        self.gate_dir.mkdir(parents=True, exist_ok=True)
        self.waiting_path.write_text("waiting", encoding="utf-8")
        logger.info("[gate] waiting for human verification")

    def signal_complete(self) -> None:
        self.gate_dir.mkdir(parents=True, exist_ok=True)
        self.completed_path.write_text("completed", encoding="utf-8")
        logger.info("[gate] verification completed signal written")

    def wait_for_completion(
        self,
        timeout_s: float,
        poll_s: float = 1.0,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_tick: Optional[Callable[[], None]] = None,
    ) -> None:
        """Block until signal_complete() has been called or timeout_s elapses.

        on_tick runs once per poll; the engine uses it to keep the page alive.
        """
        self.mark_waiting()
        deadline = clock() + float(timeout_s)
        while True:
            if self.completed_path.exists():
                self.waiting_path.unlink(missing_ok=True)
                logger.info("[gate] verification completed, resuming")
                return
            if clock() >= deadline:
                raise VerificationTimeoutError(
                    f"Human verification not completed within {int(timeout_s)}s"
                )
            if on_tick is not None:
                on_tick()
            sleep(poll_s)
