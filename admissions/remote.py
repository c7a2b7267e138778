from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Protocol

import requests

from .errors import RemoteError
from .settings import settings


class RemoteStore(Protocol):
    def upsert_user_by_email(self, email: str, first_name: str = "", last_name: str = "") -> Optional[str]:
        ...

    def insert_submission(self, payload: Dict[str, Any]) -> None:
        ...

    def select_submissions(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        ...


class RestRemoteStore:
    """PostgREST-style client (the Supabase REST surface) over `requests`.

    Every failure comes out as RemoteError with reason network, conflict or error.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout_s: float = 8,
        users_table: str = "users",
        submissions_table: str = "applications",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base = url.rstrip("/") + "/rest/v1"
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.users_table = users_table
        self.submissions_table = submissions_table
        self.http = session or requests.Session()

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(self, method: str, table: str, **kwargs) -> requests.Response:
        url = f"{self.base}/{table}"
        try:
            resp = self.http.request(method, url, timeout=self.timeout_s, **kwargs)
        except requests.RequestException as e:
            raise RemoteError(f"{method} {table}: {type(e).__name__}: {e}", reason="network") from e
        if resp.status_code == 409:
            raise RemoteError(f"{method} {table}: conflict", reason="conflict", status_code=409)
        if resp.status_code >= 400:
            raise RemoteError(f"{method} {table}: HTTP {resp.status_code} {resp.text[:200]}", status_code=resp.status_code)
        return resp

    def upsert_user_by_email(self, email: str, first_name: str = "", last_name: str = "") -> Optional[str]:
        if not email:
            return None
        resp = self._request(
            "GET",
            self.users_table,
            headers=self._headers(),
            params={"select": "id", "email": f"eq.{email}", "limit": "1"},
        )
        rows = resp.json()
        if rows:
            return str(rows[0]["id"])
        body = {
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
            "role": "applicant",
            "is_active": True,
        }
        resp = self._request(
            "POST",
            self.users_table,
            headers=self._headers(prefer="return=representation"),
            data=json.dumps(body),
        )
        created = resp.json()
        if isinstance(created, list):
            created = created[0] if created else {}
        return str(created["id"]) if created.get("id") is not None else None

    def insert_submission(self, payload: Dict[str, Any]) -> None:
        self._request(
            "POST",
            self.submissions_table,
            headers=self._headers(prefer="return=minimal"),
            data=json.dumps(payload),
        )

    def select_submissions(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        params = {"select": "*", "order": "submitted_at.desc"}
        for key, value in (filters or {}).items():
            params[key] = f"eq.{value}"
        resp = self._request("GET", self.submissions_table, headers=self._headers(), params=params)
        rows = resp.json()
        return rows if isinstance(rows, list) else []


def remote_from_settings() -> Optional[RestRemoteStore]:
    """Build the configured remote client, or None when URL or key is missing."""
    if not settings.remote_configured:
        return None
    cfg = settings.remote
    return RestRemoteStore(
        url=cfg["url"],
        api_key=cfg["api_key"],
        timeout_s=float(cfg.get("timeout_s", 8)),
        users_table=cfg.get("users_table", "users"),
        submissions_table=cfg.get("submissions_table", "applications"),
    )
