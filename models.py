"""
models.py

Pydantic models shared by the orchestrator, the workflow generator and the
engine process. Field aliases keep the camelCase names the UI layer expects.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Literals
# =============================================================================

StageName = Literal["identity", "verification", "rights_holder", "appeal", "manual"]
StepAction = Literal[
    "goto",
    "fill",
    "click",
    "select",
    "upload",
    "wait_for_verification",
]

WORKFLOW_SCHEMA = "appeal_workflow.v1"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Inputs
# =============================================================================


class AppealRequest(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    infringing_url: str = Field(alias="infringingUrl")
    original_url: Optional[str] = Field(default=None, alias="originalUrl")
    ip_asset_id: Optional[str] = Field(default=None, alias="ipAssetId")

    @field_validator("infringing_url")
    @classmethod
    def _non_empty_url(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("infringing_url must not be empty")
        return v

    @field_validator("original_url", "ip_asset_id")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class Profile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str = ""
    phone: str = ""
    email: str = ""
    id_card_number: str = Field(default="", alias="idCardNumber")
    id_card_files: List[str] = Field(default_factory=list, alias="idCardFiles")


class IpAsset(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    work_name: str = Field(default="", alias="workName")
    work_type: str = Field(default="", alias="workType")
    owner: str = ""
    region: str = "中国大陆"
    work_start_date: str = Field(default="", alias="workStartDate")
    work_end_date: str = Field(default="", alias="workEndDate")
    equity_type: str = Field(default="著作权", alias="equityType")
    is_agent: bool = Field(default=False, alias="isAgent")
    auth_start_date: Optional[str] = Field(default=None, alias="authStartDate")
    auth_end_date: Optional[str] = Field(default=None, alias="authEndDate")
    auth_files: List[str] = Field(default_factory=list, alias="authFiles")
    work_proof_files: List[str] = Field(default_factory=list, alias="workProofFiles")
    status: str = "待认证"


class CaseRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    infringing_url: str = Field(alias="infringingUrl")
    original_url: Optional[str] = Field(default=None, alias="originalUrl")
    associated_ip_id: Optional[str] = Field(default=None, alias="associatedIpId")
    status: str = "新建"
    submission_date: Optional[datetime] = Field(default=None, alias="submissionDate")
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")


# =============================================================================
# Run status
# =============================================================================


class RunStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_running: bool = Field(default=False, alias="isRunning")
    current_step: Optional[str] = Field(default=None, alias="currentStep")
    progress: Optional[float] = Field(default=None, ge=0, le=100)
    error: Optional[str] = None
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")


# =============================================================================
# Generated workflow
# =============================================================================


class Step(BaseModel):
    id: str
    action: StepAction
    args: Dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    retries: int = 1
    delay_after: float = 0.0


class Stage(BaseModel):
    name: StageName
    description: str = ""
    steps: List[Step] = Field(default_factory=list)
    uploads: List[str] = Field(default_factory=list)


class GeneratedWorkflow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schema_name: str = Field(default=WORKFLOW_SCHEMA, alias="schema")
    target_url: str
    debug_endpoint: str
    gate_dir: str
    verification_timeout_s: float
    stages: List[Stage] = Field(default_factory=list)

    def stage(self, name: str) -> Optional[Stage]:
        for s in self.stages:
            if s.name == name:
                return s
        return None

    @property
    def stage_names(self) -> List[str]:
        return [s.name for s in self.stages]


# =============================================================================
# Execution results
# =============================================================================


class EngineResult(BaseModel):
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def diagnostics(self) -> str:
        return "\n".join(p for p in (self.stderr.strip(), self.stdout.strip()) if p)


class ExecutionOutcome(BaseModel):
    ok: bool
    strategy: str
    message: str = ""
    manual_guide: Optional[str] = None
    failures: List[str] = Field(default_factory=list)
