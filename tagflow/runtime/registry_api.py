"""Container registry management API client (GitLab-style project registry)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence
from urllib.parse import quote

import requests

from tagflow.common.errors import RegistryApiError
from tagflow.common.models import RegistryRepository, RegistryTag
from tagflow.common.retry import RetryPolicy

PAGE_SIZE = 100
REQUEST_TIMEOUT = 30


def match_repository(repositories: Sequence[RegistryRepository], path: str) -> Optional[RegistryRepository]:
    """Pick a repository by its full path (``group/project/php``), falling back to its short name."""
    short_name = path.rsplit("/", 1)[-1]
    for repository in repositories:
        if repository.path == path:
            return repository
    for repository in repositories:
        if repository.name == short_name:
            return repository
    return None


class RegistryApiClient:
    """List repositories and tags of a project registry and delete tags."""

    def __init__(
        self,
        *,
        api_url: str,
        project_id: str,
        token: str,
        auth_header: str = "PRIVATE-TOKEN",
        session: Optional[requests.Session] = None,
        retry_policy: Optional[RetryPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.project_id = project_id
        self.session = session or requests.Session()
        self.retry_policy = retry_policy or RetryPolicy()
        self.logger = logger or logging.getLogger(__name__)

        if auth_header.lower() == "authorization":
            self.session.headers.update({"Authorization": f"Bearer {token}"})
        else:
            self.session.headers.update({auth_header: token})

    @property
    def repositories_url(self) -> str:
        return f"{self.api_url}/projects/{quote(str(self.project_id), safe='')}/registry/repositories"

    def list_repositories(self) -> List[RegistryRepository]:
        repositories = [
            RegistryRepository(id=int(item["id"]), name=item.get("name") or "", path=item.get("path") or "")
            for item in self._paginate(self.repositories_url)
        ]
        self.logger.debug("Discovered %d registry repositories", len(repositories))
        return repositories

    def list_tags(self, repository_id: int) -> List[RegistryTag]:
        url = f"{self.repositories_url}/{repository_id}/tags"
        return [
            RegistryTag(
                name=item.get("name"),
                digest=item.get("digest"),
                total_size=int(item.get("total_size") or 0),
            )
            for item in self._paginate(url)
        ]

    def delete_tag(self, repository_id: int, tag: str) -> bool:
        """
        Delete a tag (or a digest reference) from a repository.

        Returns:
            True when the tag was deleted, False when it did not exist.

        Raises:
            RegistryApiError: On transport failures or unexpected API responses.
        """
        url = f"{self.repositories_url}/{repository_id}/tags/{quote(tag, safe='')}"
        response = self._request("DELETE", url, allow_not_found=True)
        return response is not None

    def _paginate(self, url: str) -> Iterator[Dict[str, Any]]:
        page: Optional[str] = "1"
        while page:
            response = self._request("GET", url, params={"per_page": PAGE_SIZE, "page": page})
            payload = response.json() if response is not None else []
            if not isinstance(payload, list):
                raise RegistryApiError(f"Unexpected response payload from {url}", url=url)
            yield from payload
            page = (response.headers.get("X-Next-Page") or "").strip() if response is not None else None

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[requests.Response]:
        def send() -> Optional[requests.Response]:
            try:
                response = self.session.request(method, url, params=params, timeout=REQUEST_TIMEOUT)
            except requests.RequestException as exc:
                raise RegistryApiError(f"{method} {url} failed: {exc}", url=url) from exc

            if allow_not_found and response.status_code == 404:
                return None
            if response.status_code >= 400:
                raise RegistryApiError(
                    f"{method} {url} returned status {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                    url=url,
                )
            return response

        return self.retry_policy.call(
            send,
            retry_on=(RegistryApiError,),
            should_retry=lambda exc: isinstance(exc, RegistryApiError) and exc.retryable,
            description=f"{method} {url}",
            logger=self.logger,
        )
