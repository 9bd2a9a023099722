"""Shared fixtures: temp files root, sample records, fake engine, spy session manager.

No browser and no subprocess is ever started by these fixtures.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from config import AutomationConfig
from models import AppealRequest, EngineResult, IpAsset, Profile
from orchestrator import AppealOrchestrator, StatusStore
from repository import JsonRepository
from verification_gate import GateState, VerificationGate
from workflow_executor import WorkflowExecutor
from workflow_generator import WorkflowGenerator, read_workflow


# === FAKES ===


class FakeEngine:
    """Returns scripted EngineResults and records the workflow it was given."""

    def __init__(self, results: Optional[List[EngineResult]] = None, behaviour: Optional[Callable] = None):
        self.results = list(results or [])
        self.behaviour = behaviour
        self.calls: List[Path] = []
        self.workflows = []

    async def run(self, workflow_path: Path, timeout_s: float) -> EngineResult:
        self.calls.append(Path(workflow_path))
        wf = read_workflow(workflow_path)
        self.workflows.append(wf)
        if self.behaviour is not None:
            return await self.behaviour(wf)
        if self.results:
            return self.results.pop(0)
        return EngineResult(exit_code=0, stdout="ok")


class SpySessionManager:
    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.ensure_calls = 0
        self.release_calls = 0
        self.owned = False
        self.user_data_dir = Path("unused")

    async def ensure_debuggable_session(self) -> None:
        self.ensure_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.owned = True

    def release(self) -> None:
        self.release_calls += 1
        self.owned = False

    def probe_sync(self) -> bool:
        return False


async def wait_for_gate_signal(wf) -> EngineResult:
    """Engine behaviour that blocks on the verification gate like the real runner."""
    gate = VerificationGate(wf.gate_dir)
    gate.mark_waiting()
    for _ in range(500):
        if gate.state == GateState.COMPLETED:
            return EngineResult(exit_code=0, stdout="done")
        await asyncio.sleep(0.01)
    return EngineResult(exit_code=20, stdout="VERIFICATION_TIMEOUT", stderr="verification timeout")


# === FIXTURES: files & records ===


@pytest.fixture
def files_root(tmp_path: Path) -> Path:
    root = tmp_path / "files"
    root.mkdir()
    for name in ("id_front.png", "id_back.png", "auth.pdf", "proof.pdf"):
        (root / name).write_bytes(b"\x89PNG")
    return root


@pytest.fixture
def profile() -> Profile:
    return Profile(
        name="张三 O'Brien",
        phone="13800000000",
        email="zhang@example.com",
        id_card_number="110101199001011234",
        id_card_files=["id_front.png"],
    )


@pytest.fixture
def profile_two_docs(profile: Profile) -> Profile:
    return profile.model_copy(update={"id_card_files": ["id_front.png", "id_back.png"]})


@pytest.fixture
def ip_asset() -> IpAsset:
    return IpAsset(
        id="asset-1",
        owner="Studio \"Blue\"",
        work_type="视频",
        work_name="My Clip",
        work_start_date="2024-01-01",
        work_end_date="2030-01-01",
        auth_files=["auth.pdf"],
        work_proof_files=["proof.pdf"],
    )


@pytest.fixture
def request_a() -> AppealRequest:
    return AppealRequest(infringing_url="https://example.com/clip/1")


# === FIXTURES: components ===


@pytest.fixture
def config(tmp_path: Path, files_root: Path) -> AutomationConfig:
    return AutomationConfig(
        work_dir=tmp_path / "work",
        data_dir=tmp_path / "data",
        files_root=files_root,
        user_data_dir=tmp_path / "chrome-profile",
        verification_timeout_s=5,
        debug_port_timeout_s=1,
        settle_s=0,
    )


@pytest.fixture
def generator(config: AutomationConfig) -> WorkflowGenerator:
    return WorkflowGenerator.from_config(config, config.work_dir / "gate")


@pytest.fixture
def repository(config: AutomationConfig) -> JsonRepository:
    return JsonRepository(config.resolved_data_dir)


@pytest.fixture
def make_orchestrator(config, generator, repository):
    def _make(engine: FakeEngine, session: Optional[SpySessionManager] = None):
        session = session or SpySessionManager()
        executor = WorkflowExecutor(engine, work_dir=config.work_dir, timeout_s=5)
        orch = AppealOrchestrator(
            repository=repository,
            session_manager=session,
            generator=generator,
            executor=executor,
            gate=VerificationGate(config.work_dir / "gate"),
            status_store=StatusStore(),
            config=config,
            gate_poll_s=0.01,
        )
        return orch, session

    return _make
