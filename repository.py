"""
repository.py

Small JSON-file store for the filer profile, IP assets and case records.

  <data_dir>/profile.json     single active profile
  <data_dir>/ip_assets.json   list of IpAsset
  <data_dir>/cases.json       list of CaseRecord
"""

from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Union

from config import setup_logger
from models import AppealRequest, CaseRecord, IpAsset, Profile

logger = setup_logger("Repository")


class JsonRepository:
    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()

    # -------------------------
    # Raw IO
    # -------------------------
    def _read(self, name: str, default: Any) -> Any:
        path = self.data_dir / name
        if not path.exists():
            return default
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, name: str, payload: Any) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self.data_dir / name
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
        tmp.replace(path)

    # -------------------------
    # Profile
    # -------------------------
    def get_profile(self) -> Optional[Profile]:
        raw = self._read("profile.json", None)
        return Profile.model_validate(raw) if raw else None

    def save_profile(self, profile: Profile) -> Profile:
        if not profile.id:
            profile = profile.model_copy(update={"id": str(uuid.uuid4())})
        with self._lock:
            self._write("profile.json", profile.model_dump(mode="json", by_alias=True))
        return profile

    # -------------------------
    # IP assets
    # -------------------------
    def list_ip_assets(self) -> List[IpAsset]:
        return [IpAsset.model_validate(a) for a in self._read("ip_assets.json", [])]

    def get_ip_asset(self, asset_id: str) -> Optional[IpAsset]:
        for asset in self.list_ip_assets():
            if asset.id == asset_id:
                return asset
        return None

    def save_ip_asset(self, asset: IpAsset) -> IpAsset:
        if not asset.id:
            asset = asset.model_copy(update={"id": str(uuid.uuid4())})
        with self._lock:
            assets = [a for a in self.list_ip_assets() if a.id != asset.id]
            assets.append(asset)
            self._write("ip_assets.json", [a.model_dump(mode="json", by_alias=True) for a in assets])
        return asset

    # -------------------------
    # Cases
    # -------------------------
    def list_cases(self) -> List[CaseRecord]:
        return [CaseRecord.model_validate(c) for c in self._read("cases.json", [])]

    def save_case_record(self, request: AppealRequest, outcome_status: str) -> CaseRecord:
        record = CaseRecord(
            id=str(uuid.uuid4()),
            infringing_url=request.infringing_url,
            original_url=request.original_url,
            associated_ip_id=request.ip_asset_id,
            status=outcome_status,
            submission_date=datetime.now(timezone.utc) if outcome_status == "submitted" else None,
        )
        with self._lock:
            cases = [c.model_dump(mode="json", by_alias=True) for c in self.list_cases()]
            cases.append(record.model_dump(mode="json", by_alias=True))
            self._write("cases.json", cases)
        logger.info("[repo] case saved id=%s status=%s", record.id, outcome_status)
        return record
