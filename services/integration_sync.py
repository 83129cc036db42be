# services/integration_sync.py

import base64
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote, urlparse

import aiohttp

from core.errors import IntegrationSyncError
from core.interfaces import IntegrationSync
from core.state_models import (FileEntry, GitHubCredentials, IntegrationKind, Project,
                               SupabaseCredentials)

logger = logging.getLogger(__name__)


class _HttpSync(IntegrationSync):
    """Shared session handling for the REST-backed syncs."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout: float = 30.0):
        self._session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def _with_session(self, handler, *args):
        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession(timeout=self.timeout)
        try:
            return await handler(session, *args)
        except aiohttp.ClientError as e:
            raise IntegrationSyncError(f"{self.__class__.__name__} request failed: {e}") from e
        finally:
            if owns_session:
                await session.close()


class SupabaseSync(_HttpSync):
    """Upserts the project row into the ``projects`` table through PostgREST."""

    table = "projects"

    @staticmethod
    def build_row(project: Project) -> Dict[str, Any]:
        return {
            "id": project.id,
            "name": project.name,
            "description": project.description,
            "files": [f.to_dict() for f in project.files],
            "saved_at": project.saved_at.isoformat(),
        }

    async def notify(self, project: Project) -> None:
        creds = project.integrations.get(IntegrationKind.SUPABASE)
        if not isinstance(creds, SupabaseCredentials):
            return
        logger.info(f"Saving project \"{project.name}\" to Supabase...")
        await self._with_session(self._upsert, creds, self.build_row(project))

    async def _upsert(self, session: aiohttp.ClientSession, creds: SupabaseCredentials, row: Dict[str, Any]):
        url = f"{creds.url.rstrip('/')}/rest/v1/{self.table}"
        headers = {
            "apikey": creds.anon_key,
            "Authorization": f"Bearer {creds.anon_key}",
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates",
        }
        async with session.post(url, headers=headers, json=row) as response:
            if response.status >= 300:
                body = await response.text()
                raise IntegrationSyncError(f"Supabase upsert failed ({response.status}): {body[:300]}")


def parse_repo_url(repo_url: str) -> Tuple[str, str]:
    """``https://github.com/owner/repo(.git)`` -> ``(owner, repo)``."""
    parts = [p for p in urlparse(repo_url).path.split("/") if p]
    if len(parts) < 2:
        raise IntegrationSyncError(f"Not a GitHub repository URL: {repo_url}")
    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[:-4]
    return owner, repo


class GitHubSync(_HttpSync):
    """Pushes every project file through the GitHub contents API, one commit per file."""

    api_base = "https://api.github.com"

    async def notify(self, project: Project) -> None:
        creds = project.integrations.get(IntegrationKind.GITHUB)
        if not isinstance(creds, GitHubCredentials):
            return
        message = f"Update from site generator: {datetime.now().isoformat()}"
        logger.info(f"Pushing {len(project.files)} files for \"{project.name}\" to {creds.repo_url}")
        await self._with_session(self._push_files, creds, list(project.files), message)

    async def _push_files(self, session: aiohttp.ClientSession, creds: GitHubCredentials, files, message: str):
        owner, repo = parse_repo_url(creds.repo_url)
        headers = {
            "Authorization": f"Bearer {creds.token}",
            "Accept": "application/vnd.github+json",
        }
        for entry in files:
            await self._put_file(session, headers, owner, repo, creds.branch, entry, message)

    async def _put_file(self, session: aiohttp.ClientSession, headers: Dict[str, str], owner: str, repo: str,
                        branch: str, entry: FileEntry, message: str):
        url = f"{self.api_base}/repos/{owner}/{repo}/contents/{quote(entry.path)}"

        # Updating an existing file requires its current blob sha.
        sha = None
        async with session.get(url, headers=headers, params={"ref": branch}) as response:
            if response.status == 200:
                sha = (await response.json()).get("sha")
            elif response.status != 404:
                body = await response.text()
                raise IntegrationSyncError(f"GitHub lookup of {entry.path} failed ({response.status}): {body[:300]}")

        payload = {
            "message": message,
            "content": base64.b64encode(entry.content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            payload["sha"] = sha
        async with session.put(url, headers=headers, json=payload) as response:
            if response.status not in (200, 201):
                body = await response.text()
                raise IntegrationSyncError(f"GitHub push of {entry.path} failed ({response.status}): {body[:300]}")
        logger.debug(f"Pushed {entry.path} to {owner}/{repo}@{branch}")
