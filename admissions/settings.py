from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import orjson
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError


_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_CONFIG_PATH = _PROJECT_ROOT / "config" / "config.json"


class _StorageCfg(BaseModel):
    url: str
    quota_bytes: Optional[int] = None
    draft_key: str = "applicationFormData"
    submissions_prefix: str = "submittedApplications/"


class _SubmissionCfg(BaseModel):
    strict: bool = True


class _RawConfig(BaseModel):
    storage: _StorageCfg
    submission: _SubmissionCfg = Field(default_factory=_SubmissionCfg)
    remote: Optional[Dict[str, Any]] = None
    sync: Optional[Dict[str, Any]] = None
    audit: Optional[Dict[str, Any]] = None


class Settings(BaseModel):
    storage: Dict[str, Any]
    submission: Dict[str, Any]
    remote: Dict[str, Any]
    sync: Dict[str, Any]
    audit: Dict[str, Any]
    data_dir: str = Field(..., description="Base directory for relative sqlite paths and audit logs")

    @classmethod
    def load(cls) -> "Settings":
        # Secrets for the remote store live in .env
        load_dotenv(dotenv_path=_PROJECT_ROOT / ".env", override=False)

        try:
            raw_bytes = _CONFIG_PATH.read_bytes()
        except FileNotFoundError as e:
            raise FileNotFoundError(f"Missing config file at {_CONFIG_PATH}") from e
        try:
            raw_obj = orjson.loads(raw_bytes)
        except orjson.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file: {_CONFIG_PATH}") from e
        try:
            validated = _RawConfig.model_validate(raw_obj)
        except ValidationError as e:
            raise ValueError(f"Invalid config structure: {e}") from e

        remote_cfg = {
            "url": "",
            "api_key": "",
            "timeout_s": 8,
            "await_s": 10,
            "users_table": "users",
            "submissions_table": "applications",
        }
        if validated.remote:
            remote_cfg.update(validated.remote)
        # Environment wins over the checked-in config
        remote_cfg["url"] = os.getenv("SUPABASE_URL", remote_cfg["url"]) or ""
        remote_cfg["api_key"] = os.getenv("SUPABASE_ANON_KEY", remote_cfg["api_key"]) or ""

        sync_cfg = {"poll_interval_s": 10}
        if validated.sync:
            sync_cfg.update(validated.sync)

        audit_cfg = {"enabled": True, "log_dir": "audit"}
        if validated.audit:
            audit_cfg.update(validated.audit)

        return cls(
            storage=validated.storage.model_dump(),
            submission=validated.submission.model_dump(),
            remote=remote_cfg,
            sync=sync_cfg,
            audit=audit_cfg,
            data_dir=str(_PROJECT_ROOT),
        )

    @property
    def cfg_hash(self) -> str:
        from hashlib import sha256

        try:
            raw_bytes = _CONFIG_PATH.read_bytes()
        except FileNotFoundError:
            raw_bytes = b"{}"
        try:
            obj = orjson.loads(raw_bytes)
        except orjson.JSONDecodeError:
            obj = {}
        canonical = orjson.dumps(obj, option=orjson.OPT_SORT_KEYS)
        return sha256(canonical).hexdigest()

    @property
    def remote_configured(self) -> bool:
        return bool(self.remote.get("url")) and bool(self.remote.get("api_key"))

    def storage_url(self) -> str:
        url = str(self.storage["url"])
        prefix = "sqlite:///"
        if not url.startswith(prefix) or url == "sqlite:///:memory:":
            return url
        p = Path(url[len(prefix):])
        # Resolve relative to data dir if relative path provided
        if not p.is_absolute():
            p = Path(self.data_dir) / p
        p.parent.mkdir(parents=True, exist_ok=True)
        return f"{prefix}{p}"

    def audit_dir(self) -> Path:
        p = Path(self.audit.get("log_dir", "audit"))
        if not p.is_absolute():
            p = Path(self.data_dir) / p
        p.mkdir(parents=True, exist_ok=True)
        return p


# Singleton settings instance for convenience
settings = Settings.load()
