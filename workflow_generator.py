"""
workflow_generator.py

Builds the per-run appeal workflow (schema "appeal_workflow.v1") consumed by
workflow_runner.py.

Stages, in order:
  identity       -> open the appeal form, fill filer identity, upload ID documents
  verification   -> block on the VerificationGate until a human solved CAPTCHA/SMS
  rights_holder  -> only when an IP asset is attached: owner/work fields + proof uploads
  appeal         -> infringing URL, original URL, statement, pledge checkbox

The workflow is plain data. It is written to disk as JSON, so every free-text
value (names, URLs) is escaped by the JSON encoder and read back verbatim by
the engine. generate() is a pure function of its inputs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Union

from config import AutomationConfig, setup_logger
from errors import PreconditionMissingError
from models import AppealRequest, GeneratedWorkflow, IpAsset, Profile, Stage, Step

logger = setup_logger("WorkflowGenerator")

DEFAULT_STATEMENT = "该链接内容侵犯了我的版权，要求立即删除。"

# Plain selector table for the appeal form (Element UI).
SELECTORS: Dict[str, str] = {
    "name": 'input[placeholder="真实姓名"].el-input__inner',
    "phone": 'input[placeholder="手机号"].el-input__inner',
    "email": '.el-form-item:has-text("邮箱") input.el-input__inner',
    "id_card_number": 'input[placeholder="证件号码"].el-input__inner',
    "id_card_upload": ".el-upload__input",
    "next": 'button:has-text("下一步")',
    "owner": '.el-form-item:has-text("权利人") input.el-input__inner',
    "work_type": '.el-form-item:has-text("著作类型") .el-select',
    "work_type_option": '.el-select-dropdown__item:has-text("{value}")',
    "work_name": '.el-form-item:has-text("著作名称") input.el-input__inner',
    "work_start_date": '.el-form-item:has-text("作品期限") input[placeholder*="开始"]',
    "work_end_date": '.el-form-item:has-text("作品期限") input[placeholder*="结束"]',
    "auth_start_date": '.el-form-item:has-text("授权期限") input[placeholder*="开始"]',
    "auth_end_date": '.el-form-item:has-text("授权期限") input[placeholder*="结束"]',
    "auth_upload": '.el-form-item:has-text("授权证明") .el-upload__input',
    "proof_upload": '.el-form-item:has-text("证明") .copyright-img-upload .el-upload__input',
    "infringing_url": 'input[placeholder*="他人发布的B站侵权链接"]',
    "original_url": 'input[placeholder*="原创链接"]',
    "statement": 'textarea[placeholder*="该链接内容全部"]',
    "pledge": '.el-checkbox__label:has-text("本人保证")',
    "submit": 'button:has-text("提交")',
}


class WorkflowGenerator:
    def __init__(
        self,
        *,
        appeal_url: str,
        debug_endpoint: str,
        gate_dir: Union[str, Path],
        files_root: Union[str, Path],
        verification_timeout_s: float = 600.0,
        auto_submit: bool = False,
        statement: str = DEFAULT_STATEMENT,
    ):
        self.appeal_url = appeal_url
        self.debug_endpoint = debug_endpoint
        self.gate_dir = Path(gate_dir)
        self.files_root = Path(files_root)
        self.verification_timeout_s = float(verification_timeout_s)
        self.auto_submit = bool(auto_submit)
        self.statement = statement

    @classmethod
    def from_config(cls, config: AutomationConfig, gate_dir: Union[str, Path]) -> "WorkflowGenerator":
        return cls(
            appeal_url=config.appeal_url,
            debug_endpoint=config.debug_endpoint,
            gate_dir=gate_dir,
            files_root=config.resolved_files_root,
            verification_timeout_s=config.verification_timeout_s,
            auto_submit=config.auto_submit,
        )

    # -------------------------
    # File references
    # -------------------------
    def resolve_file(self, ref: str, kind: str) -> str:
        p = Path(ref).expanduser()
        if not p.is_absolute():
            p = self.files_root / p
        p = p.resolve()
        if not p.is_file():
            raise PreconditionMissingError(f"{kind} file not found: {p}")
        return str(p)

    def resolve_files(self, refs: List[str], kind: str) -> List[str]:
        return [self.resolve_file(r, kind) for r in refs if str(r).strip()]

    # -------------------------
    # Generation
    # -------------------------
    def generate(
        self,
        profile: Profile,
        ip_asset: Optional[IpAsset],
        request: AppealRequest,
    ) -> GeneratedWorkflow:
        if not [f for f in profile.id_card_files if str(f).strip()]:
            raise PreconditionMissingError("Profile has no identity document files; upload at least one ID image")

        id_files = self.resolve_files(profile.id_card_files, "Identity document")

        stages = [self._identity_stage(profile, id_files), self._verification_stage()]
        if ip_asset is not None:
            auth_files = self.resolve_files(ip_asset.auth_files, "Authorization")
            proof_files = self.resolve_files(ip_asset.work_proof_files, "Work ownership proof")
            stages.append(self._rights_holder_stage(ip_asset, auth_files, proof_files))
        stages.append(self._appeal_stage(request))

        wf = GeneratedWorkflow(
            target_url=self.appeal_url,
            debug_endpoint=self.debug_endpoint,
            gate_dir=str(self.gate_dir.resolve()),
            verification_timeout_s=self.verification_timeout_s,
            stages=stages,
        )
        logger.info("[gen] workflow stages=%s", ",".join(wf.stage_names))
        return wf

    def _identity_stage(self, profile: Profile, id_files: List[str]) -> Stage:
        steps = [
            Step(
                id="identity_goto",
                action="goto",
                args={"url": self.appeal_url},
                description="Open the copyright appeal form",
                retries=2,
                delay_after=1.0,
            ),
            _fill("identity_name", "name", profile.name, "Real name"),
            _fill("identity_phone", "phone", profile.phone, "Phone number"),
            _fill("identity_email", "email", profile.email, "Email"),
            _fill("identity_id_card", "id_card_number", profile.id_card_number, "ID number"),
            Step(
                id="identity_upload",
                action="upload",
                args={"selector": SELECTORS["id_card_upload"], "files": list(id_files)},
                description="Upload identity documents",
                delay_after=1.0,
            ),
        ]
        return Stage(name="identity", description="Filer identity", steps=steps, uploads=list(id_files))

    def _verification_stage(self) -> Stage:
        steps = [
            Step(
                id="verification_wait",
                action="wait_for_verification",
                args={"gate_dir": str(self.gate_dir.resolve()), "timeout_s": self.verification_timeout_s},
                description="Wait for the human to finish CAPTCHA / SMS verification",
                retries=0,
            ),
            _click("verification_next", "next", "Next page", delay_after=2.0),
        ]
        return Stage(name="verification", description="Human verification", steps=steps)

    def _rights_holder_stage(self, asset: IpAsset, auth_files: List[str], proof_files: List[str]) -> Stage:
        steps = [
            _fill("rights_owner", "owner", asset.owner, "Rights holder"),
            Step(
                id="rights_work_type",
                action="select",
                args={
                    "selector": SELECTORS["work_type"],
                    "option_selector": SELECTORS["work_type_option"].format(value=asset.work_type.replace('"', '\\"')),
                    "value": asset.work_type,
                },
                description="Work type",
                delay_after=0.5,
            ),
            _fill("rights_work_name", "work_name", asset.work_name, "Work name"),
        ]
        for key in ("work_start_date", "work_end_date", "auth_start_date", "auth_end_date"):
            value = getattr(asset, key)
            if value:
                steps.append(_fill(f"rights_{key}", key, value, key.replace("_", " ").capitalize()))
        if auth_files:
            steps.append(
                Step(
                    id="rights_auth_upload",
                    action="upload",
                    args={"selector": SELECTORS["auth_upload"], "files": list(auth_files)},
                    description="Upload authorization documents",
                    delay_after=1.0,
                )
            )
        if proof_files:
            steps.append(
                Step(
                    id="rights_proof_upload",
                    action="upload",
                    args={"selector": SELECTORS["proof_upload"], "files": list(proof_files)},
                    description="Upload work ownership proof",
                    delay_after=1.0,
                )
            )
        steps.append(_click("rights_next", "next", "Next page", delay_after=2.0))
        return Stage(
            name="rights_holder",
            description="Rights holder / IP asset",
            steps=steps,
            uploads=list(auth_files) + list(proof_files),
        )

    def _appeal_stage(self, request: AppealRequest) -> Stage:
        steps = [_fill("appeal_infringing_url", "infringing_url", request.infringing_url, "Infringing link")]
        if request.original_url:
            steps.append(_fill("appeal_original_url", "original_url", request.original_url, "Original link"))
        steps.append(_fill("appeal_statement", "statement", self.statement, "Appeal statement"))
        steps.append(_click("appeal_pledge", "pledge", "Accept the pledge"))
        if self.auto_submit:
            steps.append(_click("appeal_submit", "submit", "Submit the appeal", delay_after=2.0))
        return Stage(name="appeal", description="Appeal details", steps=steps)


# -----------------------------------------------------------------------------
# Step builders
# -----------------------------------------------------------------------------
def _fill(step_id: str, field: str, value: str, description: str) -> Step:
    return Step(
        id=step_id,
        action="fill",
        args={"selector": SELECTORS[field], "value": value or "", "field": field},
        description=description,
        delay_after=0.2,
    )


def _click(step_id: str, target: str, description: str, delay_after: float = 0.5) -> Step:
    return Step(
        id=step_id,
        action="click",
        args={"selector": SELECTORS[target]},
        description=description,
        delay_after=delay_after,
    )


# -----------------------------------------------------------------------------
# Fallback variants
# -----------------------------------------------------------------------------
def simplify(workflow: GeneratedWorkflow) -> GeneratedWorkflow:
    """Same workflow without file uploads; the human attaches files by hand."""
    wf = workflow.model_copy(deep=True)
    for stage in wf.stages:
        stage.steps = [s for s in stage.steps if s.action != "upload"]
        stage.uploads = []
    return wf


def open_page_only(workflow: GeneratedWorkflow) -> GeneratedWorkflow:
    goto = Step(
        id="manual_goto",
        action="goto",
        args={"url": workflow.target_url},
        description="Open the copyright appeal form for manual filing",
        retries=2,
    )
    return GeneratedWorkflow(
        target_url=workflow.target_url,
        debug_endpoint=workflow.debug_endpoint,
        gate_dir=workflow.gate_dir,
        verification_timeout_s=workflow.verification_timeout_s,
        stages=[Stage(name="manual", description="Manual filing", steps=[goto])],
    )


def render_manual_guide(workflow: GeneratedWorkflow) -> str:
    lines = [f"Manual filing guide for {workflow.target_url}", ""]
    n = 0
    for stage in workflow.stages:
        lines.append(f"[{stage.name}] {stage.description}")
        for step in stage.steps:
            if step.action == "goto":
                continue
            n += 1
            if step.action == "fill":
                lines.append(f"  {n}. {step.description}: {step.args.get('value', '')}")
            elif step.action == "select":
                lines.append(f"  {n}. {step.description}: choose \"{step.args.get('value', '')}\"")
            elif step.action == "upload":
                lines.append(f"  {n}. {step.description}:")
                lines.extend(f"       - {f}" for f in step.args.get("files", []))
            elif step.action == "wait_for_verification":
                lines.append(f"  {n}. Complete the CAPTCHA / SMS verification in the browser")
            else:
                lines.append(f"  {n}. {step.description}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def write_workflow(workflow: GeneratedWorkflow, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(workflow.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    return path


def read_workflow(path: Union[str, Path]) -> GeneratedWorkflow:
    return GeneratedWorkflow.model_validate_json(Path(path).read_text(encoding="utf-8"))
