"""
commands.py

Command-line front end.

  rightsguard run --url <infringing url> [--original-url U] [--ip-asset ID]
  rightsguard continue          # signal "verification done" to a waiting run
  rightsguard check-env
  rightsguard import-profile profile.json
  rightsguard import-asset asset.json
  rightsguard cases
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import threading
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from config import AutomationConfig
from errors import AlreadyRunningError
from models import AppealRequest, IpAsset, Profile, RunStatus
from orchestrator import STEP_WAITING_VERIFICATION, AppealOrchestrator
from repository import JsonRepository
from verification_gate import VerificationGate


def _print_status(st: RunStatus) -> None:
    pct = f"{st.progress:.0f}%" if st.progress is not None else "-"
    print(f"[{pct:>4}] {st.current_step or ''}")


def _prompt_verification(orch: AppealOrchestrator) -> None:
    def _wait_enter() -> None:
        try:
            input("Complete the CAPTCHA / SMS verification in Chrome, then press Enter to continue... ")
        except EOFError:
            return
        orch.signal_verification_complete()

    threading.Thread(target=_wait_enter, daemon=True).start()


async def run_appeal(orch: AppealOrchestrator, request: AppealRequest, poll_s: float = 0.5) -> int:
    try:
        await orch.start(request)
    except AlreadyRunningError as e:
        print(str(e), file=sys.stderr)
        return 1

    last: Optional[str] = None
    prompted = False
    try:
        while True:
            st = orch.status()
            if st.current_step != last:
                last = st.current_step
                _print_status(st)
                if st.current_step == STEP_WAITING_VERIFICATION and not prompted:
                    prompted = True
                    _prompt_verification(orch)
            if not st.is_running:
                break
            await asyncio.sleep(poll_s)
        await orch.wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        await orch.stop()
        _print_status(orch.status())
        return 130

    st = orch.status()
    if st.error:
        print(f"Error: {st.error}", file=sys.stderr)
        return 1
    return 0


def _load_json(path: str) -> dict:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="rightsguard", description="Copyright appeal automation")
    sub = ap.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="fill the appeal form in Chrome")
    run_p.add_argument("--url", required=True, help="infringing video URL")
    run_p.add_argument("--original-url", default=None)
    run_p.add_argument("--ip-asset", default=None, help="IP asset id")

    sub.add_parser("continue", help="signal that human verification is done")
    sub.add_parser("check-env", help="print an environment readiness report")

    prof_p = sub.add_parser("import-profile", help="store the filer profile from a JSON file")
    prof_p.add_argument("path")

    asset_p = sub.add_parser("import-asset", help="store an IP asset from a JSON file")
    asset_p.add_argument("path")

    sub.add_parser("cases", help="list saved case records")

    args = ap.parse_args(argv)
    config = AutomationConfig.from_env()

    if args.command == "continue":
        VerificationGate(config.work_dir / "gate").signal_complete()
        print("Verification signal sent.")
        return 0

    repo = JsonRepository(config.resolved_data_dir)

    if args.command == "import-profile":
        profile = repo.save_profile(Profile.model_validate(_load_json(args.path)))
        print(f"Profile saved: {profile.id}")
        return 0

    if args.command == "import-asset":
        asset = repo.save_ip_asset(IpAsset.model_validate(_load_json(args.path)))
        print(f"IP asset saved: {asset.id}")
        return 0

    if args.command == "cases":
        for c in repo.list_cases():
            print(f"{c.created_at:%Y-%m-%d %H:%M}  {c.status:<10} {c.infringing_url}")
        return 0

    orch = AppealOrchestrator.from_config(config)

    if args.command == "check-env":
        print(orch.check_environment())
        return 0

    try:
        request = AppealRequest(
            infringing_url=args.url,
            original_url=args.original_url,
            ip_asset_id=args.ip_asset,
        )
    except ValidationError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return 2

    try:
        return asyncio.run(run_appeal(orch, request))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
