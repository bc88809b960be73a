"""GitHub REST client for commits, pull requests and deployment workflow runs."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
import structlog

from doratrack.sync.sources import CommitPayload, PullRequestPayload, WorkflowRun

logger = structlog.get_logger()

PAGE_SIZE = 100


class GitHubClient:
    """Implements :class:`CommitSource`, :class:`PullRequestSource` and
    :class:`DeploymentSource`.

    Pages are followed through the ``Link: rel="next"`` header. HTTP errors
    propagate so the sync runner leaves the unit's watermark untouched.
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
        }
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def fetch_commits(self, owner: str, repo: str, since: datetime) -> list[CommitPayload]:
        commits: list[CommitPayload] = []
        url: str | None = f"/repos/{owner}/{repo}/commits"
        params: dict[str, Any] | None = {"since": since.isoformat(), "per_page": PAGE_SIZE}
        async with self._client() as client:
            while url:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                commits.extend(_commit_payload(item) for item in resp.json())
                url = resp.links.get("next", {}).get("url")
                params = None
        logger.info("github.commits_fetched", repository=f"{owner}/{repo}", count=len(commits))
        return commits

    async def fetch_workflow_runs(
        self, owner: str, repo: str, workflow: str, since: datetime
    ) -> list[WorkflowRun]:
        """Runs created at or after *since*, newest first.

        GitHub returns runs newest first, so paging stops at the first run
        older than *since*.
        """
        runs: list[WorkflowRun] = []
        url: str | None = f"/repos/{owner}/{repo}/actions/workflows/{workflow}/runs"
        params: dict[str, Any] | None = {"per_page": PAGE_SIZE}
        async with self._client() as client:
            while url:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                reached_older = False
                for item in resp.json().get("workflow_runs") or []:
                    run = _workflow_run(item)
                    if run.created_at < since:
                        reached_older = True
                        break
                    runs.append(run)
                url = None if reached_older else resp.links.get("next", {}).get("url")
                params = None
        logger.info(
            "github.workflow_runs_fetched",
            repository=f"{owner}/{repo}",
            workflow=workflow,
            count=len(runs),
        )
        return runs


    async def fetch_pull_requests(
        self, owner: str, repo: str, since: datetime
    ) -> list[PullRequestPayload]:
        """Pull requests in any state updated at or after *since*.

        The list is requested most recently updated first, so paging stops at
        the first pull request older than *since*. The first commit of each
        pull request comes from its commit list, which GitHub returns oldest
        first.
        """
        pulls: list[PullRequestPayload] = []
        url: str | None = f"/repos/{owner}/{repo}/pulls"
        params: dict[str, Any] | None = {
            "state": "all",
            "sort": "updated",
            "direction": "desc",
            "per_page": PAGE_SIZE,
        }
        async with self._client() as client:
            while url:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                reached_older = False
                for item in resp.json():
                    updated = item.get("updated_at")
                    if updated and datetime.fromisoformat(updated) < since:
                        reached_older = True
                        break
                    first_sha = await self._first_commit_sha(client, owner, repo, item["number"])
                    pulls.append(_pull_request(item, first_sha))
                url = None if reached_older else resp.links.get("next", {}).get("url")
                params = None
        logger.info("github.pull_requests_fetched", repository=f"{owner}/{repo}", count=len(pulls))
        return pulls

    async def _first_commit_sha(
        self, client: httpx.AsyncClient, owner: str, repo: str, number: int
    ) -> str | None:
        resp = await client.get(
            f"/repos/{owner}/{repo}/pulls/{number}/commits", params={"per_page": 1}
        )
        resp.raise_for_status()
        commits = resp.json()
        return commits[0]["sha"] if commits else None


def _commit_payload(item: dict[str, Any]) -> CommitPayload:
    detail = item.get("commit") or {}
    git_author = detail.get("author") or {}
    login = (item.get("author") or {}).get("login")
    return CommitPayload(
        sha=item["sha"],
        author=login or git_author.get("name") or "",
        message=detail.get("message") or "",
        authored_at=git_author["date"],
        parent_shas=[p["sha"] for p in item.get("parents") or []],
    )


def _pull_request(item: dict[str, Any], first_commit_sha: str | None) -> PullRequestPayload:
    return PullRequestPayload(
        id=str(item["id"]),
        number=item["number"],
        state=item.get("state") or "open",
        created_at=item["created_at"],
        updated_at=item.get("updated_at"),
        merged_at=item.get("merged_at"),
        first_commit_sha=first_commit_sha,
    )


def _workflow_run(item: dict[str, Any]) -> WorkflowRun:
    return WorkflowRun(
        id=str(item["id"]),
        head_sha=item.get("head_sha") or "",
        head_branch=item.get("head_branch") or "",
        conclusion=item.get("conclusion"),
        created_at=item["created_at"],
        updated_at=item.get("updated_at"),
    )
