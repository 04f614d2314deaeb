"""
Agent-side client for the sync API.

The remote agent never holds a connection open: it heartbeats, polls
/agent/pull for pending configs, applies them locally and reports the outcome.
Server errors and network failures are retried with exponential backoff;
4xx answers are returned as-is since retrying them can't help.
"""
from __future__ import annotations
import logging
import time
from typing import Any, Callable, Dict, List, Optional
import requests

logger = logging.getLogger(__name__)

# apply(skill_slug, config) -> None on success, raises on failure
ApplyFn = Callable[[str, Dict[str, Any]], None]

class AgentClient:
    def __init__(self, base_url: str, access_token: str,
                 max_attempts: int = 3, base_delay: float = 1.0, max_delay: float = 30.0,
                 timeout: float = 15.0, session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {access_token}"})
        self.sleep = sleep
        self.last_spending: Optional[Dict[str, Any]] = None

    # -----------------------
    # HTTP helpers
    # -----------------------
    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}/v1/api{path}"
        last_err: Exception | None = None
        for attempt in range(self.max_attempts):
            try:
                r = self.session.request(method, url, timeout=self.timeout, **kwargs)
                if r.status_code < 500:
                    return r
                last_err = RuntimeError(f"HTTP {r.status_code} from {method} {path}")
            except requests.RequestException as e:
                last_err = e
            if attempt < self.max_attempts - 1:
                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                logger.info("retrying %s %s in %.1fs (%s)", method, path, delay, last_err)
                self.sleep(delay)
        raise last_err or RuntimeError("max retries exceeded")

    def _json(self, r: requests.Response) -> Dict[str, Any]:
        try:
            return r.json()
        except ValueError:
            return {"_raw": r.text}

    # -----------------------
    # Endpoints
    # -----------------------
    def health_check(self) -> bool:
        try:
            return self._request("GET", "/health").ok
        except (requests.RequestException, RuntimeError):
            return False

    def heartbeat(self, status: str = "online", session_id: str | None = None) -> Optional[Dict[str, Any]]:
        body: Dict[str, Any] = {"status": status}
        if session_id:
            body["session_id"] = session_id
        r = self._request("POST", "/heartbeat", json=body)
        if r.status_code == 429:
            return None
        r.raise_for_status()
        data = self._json(r)
        self.last_spending = data.get("spending")
        return data

    def cap_exceeded(self) -> bool:
        return bool(self.last_spending and self.last_spending.get("cap_exceeded"))

    def pull(self, since: str | None = None, include_all: bool = False) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if since:
            params["since"] = since
        if include_all:
            params["include_all"] = "true"
        r = self._request("GET", "/agent/pull", params=params)
        r.raise_for_status()
        return self._json(r)

    def report_status(self, skill_slug: str, sync_status: str, sync_error: str | None = None) -> bool:
        r = self._request("POST", "/config/status", json={
            "skill_slug": skill_slug, "sync_status": sync_status, "sync_error": sync_error
        })
        return r.ok

    def report_results(self, results: List[Dict[str, Any]]) -> int:
        r = self._request("POST", "/agent/pull", json={"results": results})
        r.raise_for_status()
        return int(self._json(r).get("updated", 0))

    # -----------------------
    # Poll cycle
    # -----------------------
    def sync_once(self, apply: ApplyFn) -> Dict[str, Any]:
        """
        Pull open configs, apply each one and acknowledge them in one batch.

        No `since` cursor: a row whose acknowledgement got lost stays syncing
        and has to come back on the next poll.
        """
        data = self.pull()
        if data.get("sync_enabled") is False:
            logger.info("config sync disabled for this agent")
            return {"pulled": 0, "updated": 0, "sync_enabled": False}

        results = []
        for cfg in data.get("configs", []):
            slug = cfg.get("skill_slug")
            try:
                apply(slug, cfg.get("config") or {})
                results.append({"skill_slug": slug, "sync_status": "applied"})
            except Exception as e:
                logger.warning("applying %s failed: %s", slug, e)
                results.append({"skill_slug": slug, "sync_status": "failed", "sync_error": str(e)[:500]})

        updated = self.report_results(results) if results else 0
        return {"pulled": len(results), "updated": updated, "sync_enabled": True}
