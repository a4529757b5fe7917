from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from cocd.errors import AuthenticationError, GitHubAPIError, RateLimitError
from cocd.logging import get_logger, log_extra

log = get_logger(__name__)

DEFAULT_TIMEOUT = 60.0


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class ResponseMeta:
    """Transport details of a call. ``pending`` means 202 Accepted: queued on GitHub's side."""

    status_code: int
    rate_limit_remaining: Optional[int] = None
    next_page: Optional[int] = None

    @property
    def pending(self) -> bool:
        return self.status_code == 202


@dataclass(frozen=True)
class Repository:
    name: str
    archived: bool = False
    disabled: bool = False
    pushed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Repository":
        return cls(
            name=payload.get("name") or "",
            archived=bool(payload.get("archived")),
            disabled=bool(payload.get("disabled")),
            pushed_at=parse_timestamp(payload.get("pushed_at")),
            updated_at=parse_timestamp(payload.get("updated_at")),
        )


@dataclass(frozen=True)
class PendingDeployment:
    environment_id: Optional[int]
    environment_name: str = ""
    current_user_can_approve: bool = False

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PendingDeployment":
        env = payload.get("environment") or {}
        return cls(
            environment_id=env.get("id"),
            environment_name=env.get("name") or "",
            current_user_can_approve=bool(payload.get("current_user_can_approve")),
        )


class GitHubAPI(Protocol):
    """Calls the monitor and the dashboard need from GitHub."""

    def list_repositories(self, page: int = 1, per_page: int = 100) -> tuple[List[Repository], ResponseMeta]:
        ...

    def list_workflow_runs(
        self, repository: str, per_page: int = 10, status: Optional[str] = None, page: int = 1
    ) -> tuple[List[Dict[str, Any]], ResponseMeta]:
        ...

    def cancel_workflow_run(self, repository: str, run_id: int) -> ResponseMeta:
        ...

    def get_pending_deployments(self, repository: str, run_id: int) -> tuple[List[PendingDeployment], ResponseMeta]:
        ...

    def approve_pending_deployment(
        self, repository: str, run_id: int, environment_ids: Sequence[int], comment: str
    ) -> ResponseMeta:
        ...

    def authenticated_user(self) -> str:
        ...


@dataclass
class GitHubClient:
    """
    Minimal GitHub REST client scoped to one organization. Safe to share between
    scanner threads: the underlying httpx.Client is created once under a lock.
    """

    token: Optional[str]
    org: str
    base_url: str = "https://api.github.com"
    timeout: float = DEFAULT_TIMEOUT
    transport: Optional[httpx.BaseTransport] = None
    _client: Optional[httpx.Client] = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "cocd",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _http(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(
                    base_url=self.base_url.rstrip("/") + "/",
                    headers=self._headers(),
                    transport=self.transport,
                    timeout=self.timeout,
                )
            return self._client

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self._http().request(method, path.lstrip("/"), **kwargs)
        except httpx.HTTPError as exc:
            raise GitHubAPIError(f"{method} {path} failed: {exc}", metadata={"path": path}) from exc
        if not resp.is_success:
            self._raise_for_response(method, path, resp)
        return resp

    @staticmethod
    def _raise_for_response(method: str, path: str, resp: httpx.Response) -> None:
        detail = resp.text
        try:
            data = resp.json()
            detail = data.get("message") or detail
        except Exception:
            pass
        message = f"{resp.status_code} {resp.reason_phrase}: {detail}"
        metadata = {"path": path, "method": method}
        if resp.status_code == 401:
            raise AuthenticationError(message, status_code=401, metadata=metadata)
        if resp.status_code in (403, 429) and resp.headers.get("x-ratelimit-remaining") == "0":
            raise RateLimitError(message, status_code=resp.status_code, metadata=metadata)
        raise GitHubAPIError(message, status_code=resp.status_code, metadata=metadata)

    @staticmethod
    def _meta(resp: httpx.Response) -> ResponseMeta:
        remaining = resp.headers.get("x-ratelimit-remaining")
        next_page = None
        next_link = resp.links.get("next", {}).get("url")
        if next_link:
            page = httpx.URL(next_link).params.get("page")
            next_page = int(page) if page and page.isdigit() else None
        return ResponseMeta(
            status_code=resp.status_code,
            rate_limit_remaining=int(remaining) if remaining and remaining.isdigit() else None,
            next_page=next_page,
        )

    def list_repositories(self, page: int = 1, per_page: int = 100) -> tuple[List[Repository], ResponseMeta]:
        resp = self.request(
            "GET",
            f"orgs/{self.org}/repos",
            params={"type": "sources", "sort": "pushed", "direction": "desc", "per_page": per_page, "page": page},
        )
        return [Repository.from_payload(item) for item in resp.json() or []], self._meta(resp)

    def list_workflow_runs(
        self, repository: str, per_page: int = 10, status: Optional[str] = None, page: int = 1
    ) -> tuple[List[Dict[str, Any]], ResponseMeta]:
        params: Dict[str, Any] = {"per_page": per_page, "page": page}
        if status:
            params["status"] = status
        resp = self.request("GET", f"repos/{self.org}/{repository}/actions/runs", params=params)
        data = resp.json() or {}
        return list(data.get("workflow_runs") or []), self._meta(resp)

    def cancel_workflow_run(self, repository: str, run_id: int) -> ResponseMeta:
        resp = self.request("POST", f"repos/{self.org}/{repository}/actions/runs/{run_id}/cancel")
        log.info("workflow_cancel_requested", extra=log_extra(repository=repository, run_id=run_id))
        return self._meta(resp)

    def get_pending_deployments(self, repository: str, run_id: int) -> tuple[List[PendingDeployment], ResponseMeta]:
        resp = self.request("GET", f"repos/{self.org}/{repository}/actions/runs/{run_id}/pending_deployments")
        return [PendingDeployment.from_payload(item) for item in resp.json() or []], self._meta(resp)

    def approve_pending_deployment(
        self, repository: str, run_id: int, environment_ids: Sequence[int], comment: str
    ) -> ResponseMeta:
        payload = {"environment_ids": list(environment_ids), "state": "approved", "comment": comment}
        resp = self.request(
            "POST", f"repos/{self.org}/{repository}/actions/runs/{run_id}/pending_deployments", json=payload
        )
        log.info(
            "deployment_approved",
            extra=log_extra(repository=repository, run_id=run_id, environment_ids=list(environment_ids)),
        )
        return self._meta(resp)

    def authenticated_user(self) -> str:
        resp = self.request("GET", "user")
        return (resp.json() or {}).get("login") or ""
