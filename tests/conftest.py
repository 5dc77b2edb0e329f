"""Shared fakes for the docker CLI and the registry HTTP API."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from urllib.parse import unquote

import pytest

from tagflow.common.catalog import ImageCatalog, ImageFamily, StageSpec, ToolAssertion
from tagflow.common.command_runner import CommandResult, CommandRunner
from tagflow.common.config import ENV_NAMES, PipelineConfig
from tagflow.common.retry import RetryPolicy
from tagflow.runtime.docker import DockerClient

REGISTRY = "registry.example.com/acme/ecosystem"
SUFFIX = "-abc123"


def image_id(seed: str) -> str:
    return "sha256:" + hashlib.sha256(seed.encode()).hexdigest()


def manifest_digest(local_id: str) -> str:
    return "sha256:" + hashlib.sha256(("manifest:" + local_id).encode()).hexdigest()


class FakeDockerEngine(CommandRunner):
    """Scripted docker CLI: a local image store plus a remote registry."""

    def __init__(self) -> None:
        super().__init__()
        self.local: Dict[str, str] = {}
        self.remote: Dict[str, str] = {}
        self.sizes: Dict[str, int] = {}
        self.run_outputs: Dict[Tuple[str, Tuple[str, ...]], Tuple[int, str]] = {}
        self.builders: Set[str] = set()
        self.calls: List[List[str]] = []
        self.failing_pushes: Dict[str, int] = {}
        self.failing_tags: Set[str] = set()
        self.failing_builds: Set[str] = set()
        self.login_ok = True
        self.buildx_create_ok = True
        self.docker_missing = False

    # Helpers for tests

    def add_image(self, reference: str, *, size: int = 0, remote: bool = True, local: bool = True) -> str:
        identifier = image_id(reference)
        if local:
            self.local[reference] = identifier
        if remote:
            self.remote[reference] = identifier
        if size:
            self.sizes[reference] = size
        return identifier

    def calls_starting_with(self, *prefix: str) -> List[List[str]]:
        return [call for call in self.calls if tuple(call[: len(prefix)]) == prefix]

    def pushed(self) -> List[str]:
        return [call[2] for call in self.calls_starting_with("docker", "push")]

    # CommandRunner interface

    def run(self, command: Sequence[str], **kwargs: Any) -> CommandResult:
        command = list(command)
        self.calls.append(command)
        if self.docker_missing:
            return CommandResult(command, None, "", "Command not found: docker", 0.0, False, False)
        return self._dispatch(command, kwargs)

    def _dispatch(self, command: List[str], kwargs: Dict[str, Any]) -> CommandResult:
        args = command[1:]
        if args[:2] == ["image", "inspect"]:
            return self._inspect(args[2], args[4] if len(args) > 4 else None)
        if args[:2] == ["manifest", "inspect"]:
            return self._result(0 if args[2] in self.remote else 1, stderr="no such manifest")
        if args[0] == "tag":
            return self._tag(args[1], args[2])
        if args[0] == "push":
            return self._push(args[1])
        if args[0] == "pull":
            return self._pull(args[1])
        if args[:2] == ["run", "--rm"]:
            code, stdout = self.run_outputs.get((args[2], tuple(args[3:])), (1, ""))
            return self._result(code, stdout=stdout)
        if args[0] == "buildx":
            return self._buildx(args[1:])
        if args[0] == "login":
            return self._result(0 if self.login_ok else 1, stderr="unauthorized")
        if args[0] == "logout":
            return self._result(0)
        if args[0] == "images":
            return self._result(0, stdout="\n".join(self.local))
        raise AssertionError(f"Unexpected docker command: {command}")

    def _inspect(self, reference: str, fmt: Optional[str]) -> CommandResult:
        if reference not in self.local:
            return self._result(1, stderr=f"No such image: {reference}")
        if fmt == "{{.Id}}":
            return self._result(0, stdout=self.local[reference] + "\n")
        if fmt == "{{.Size}}":
            return self._result(0, stdout=f"{self.sizes.get(reference, 0)}\n")
        return self._result(0, stdout="[{}]")

    def _tag(self, source: str, target: str) -> CommandResult:
        if source not in self.local or target in self.failing_tags:
            return self._result(1, stderr=f"cannot tag {source}")
        self.local[target] = self.local[source]
        if source in self.sizes:
            self.sizes[target] = self.sizes[source]
        return self._result(0)

    def _push(self, reference: str) -> CommandResult:
        remaining = self.failing_pushes.get(reference, 0)
        if remaining:
            self.failing_pushes[reference] = remaining - 1
            return self._result(1, stderr="received unexpected HTTP status: 500")
        if reference not in self.local:
            return self._result(1, stderr=f"An image does not exist locally with the tag: {reference}")
        self.remote[reference] = self.local[reference]
        digest = manifest_digest(self.local[reference])
        return self._result(0, stdout=f"latest: digest: {digest} size: 1234\n")

    def _pull(self, reference: str) -> CommandResult:
        if reference not in self.remote:
            return self._result(1, stderr=f"manifest for {reference} not found")
        self.local[reference] = self.remote[reference]
        return self._result(0, stdout=f"Status: Downloaded newer image for {reference}\n")

    def _buildx(self, args: List[str]) -> CommandResult:
        if args[0] == "inspect":
            return self._result(0 if args[1] in self.builders else 1)
        if args[0] == "create":
            if not self.buildx_create_ok:
                return self._result(1, stderr="failed to bootstrap builder")
            self.builders.add(args[args.index("--name") + 1])
            return self._result(0)
        if args[0] == "rm":
            self.builders.discard(args[1])
            return self._result(0)
        if args[0] == "build":
            tag = args[args.index("--tag") + 1]
            if tag in self.failing_builds:
                return self._result(1, stdout="#5 ERROR: process did not complete", stderr="failed to solve")
            self.local[tag] = image_id(tag)
            if "--push" in args:
                self.remote[tag] = self.local[tag]
            return self._result(0)
        raise AssertionError(f"Unexpected buildx command: {args}")

    @staticmethod
    def _result(code: int, *, stdout: str = "", stderr: str = "") -> CommandResult:
        return CommandResult(
            command=[],
            return_code=code,
            stdout=stdout,
            stderr=stderr if code else "",
            duration=0.0,
            timed_out=False,
            tool_available=True,
        )


@dataclass
class FakeResponse:
    status_code: int
    payload: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return str(self.payload)

    def json(self) -> Any:
        return self.payload


class FakeRegistrySession:
    """Minimal stand-in for ``requests.Session`` backed by an in-memory project registry."""

    def __init__(self, base_url: str, project_id: str = "42", page_size: int = 100) -> None:
        self.headers: Dict[str, str] = {}
        self.prefix = f"{base_url}/projects/{project_id}/registry/repositories"
        self.page_size = page_size
        self.repositories: List[Dict[str, Any]] = []
        self.tags: Dict[int, List[Dict[str, Any]]] = {}
        self.failures: Dict[Tuple[str, str], List[int]] = {}
        self.requests: List[Tuple[str, str]] = []

    def add_repository(self, repo_id: int, path: str, tags: Sequence[Dict[str, Any]] = ()) -> None:
        self.repositories.append({"id": repo_id, "name": path.rsplit("/", 1)[-1], "path": path})
        self.tags[repo_id] = [dict(tag) for tag in tags]

    def tag_names(self, repo_id: int) -> List[Optional[str]]:
        return [tag.get("name") for tag in self.tags[repo_id]]

    def fail(self, method: str, suffix: str, *statuses: int) -> None:
        self.failures[(method, suffix)] = list(statuses)

    def request(self, method: str, url: str, params: Optional[Dict[str, Any]] = None, timeout: Any = None) -> FakeResponse:
        assert url.startswith(self.prefix), url
        suffix = url[len(self.prefix):]
        self.requests.append((method, suffix))

        scripted = self.failures.get((method, suffix))
        if scripted:
            return FakeResponse(scripted.pop(0), {"message": "scripted failure"})

        parts = [part for part in suffix.split("/") if part]
        if method == "GET" and not parts:
            return self._page(self.repositories, params)
        if method == "GET" and len(parts) == 2 and parts[1] == "tags":
            return self._page(self.tags.get(int(parts[0]), []), params)
        if method == "DELETE" and len(parts) == 3 and parts[1] == "tags":
            return self._delete(int(parts[0]), unquote(parts[2]))
        return FakeResponse(404, {"message": "404 Not found"})

    def _page(self, items: List[Dict[str, Any]], params: Optional[Dict[str, Any]]) -> FakeResponse:
        page = int((params or {}).get("page", 1))
        start = (page - 1) * self.page_size
        chunk = items[start : start + self.page_size]
        headers = {"X-Next-Page": str(page + 1) if start + self.page_size < len(items) else ""}
        return FakeResponse(200, chunk, headers)

    def _delete(self, repo_id: int, reference: str) -> FakeResponse:
        tags = self.tags.get(repo_id, [])
        for tag in tags:
            if tag.get("name") == reference or (not tag.get("name") and tag.get("digest") == reference):
                tags.remove(tag)
                return FakeResponse(200, None)
        return FakeResponse(404, {"message": "404 Tag Not Found"})


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(ENV_NAMES.values()) + ["NO_CACHE", "CACHE_ENABLED", "DOCKER_REGISTRY", "DEBUG"]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(tmp_path) -> PipelineConfig:
    return PipelineConfig(
        registry_image=REGISTRY,
        image_suffix=SUFFIX,
        promoted_version="v1.1.0",
        project_id="42",
        registry_token="secret-token",
        images_dir=str(tmp_path / "images"),
        pipeline_id="777",
        dockerhub_username="acme",
        dockerhub_token="hub-token",
        retry_attempts=3,
        retry_delay=0,
        commit_sha="abc123",
        commit_tag="v1.1.0",
    )


@pytest.fixture
def php_family() -> ImageFamily:
    return ImageFamily(
        name="php",
        version="8.3",
        path="php/8.3",
        stages=[
            StageSpec(
                name="prod",
                expected_user="www",
                assertions=[ToolAssertion(tool="xdebug", command=["php", "-m"], expect="absent")],
            ),
            StageSpec(
                name="dev",
                assertions=[ToolAssertion(tool="xdebug", command=["php", "-m"], expect="present")],
            ),
            StageSpec(
                name="test",
                assertions=[ToolAssertion(tool="pcov", command=["php", "-m"], expect="present")],
            ),
        ],
    )


@pytest.fixture
def mysql_family() -> ImageFamily:
    return ImageFamily(name="database", version="mysql-8.0", path="database/mysql/8.0", mirror_as="mysql:8.0")


@pytest.fixture
def catalog(php_family: ImageFamily, mysql_family: ImageFamily) -> ImageCatalog:
    return ImageCatalog(families=[php_family, mysql_family])


@pytest.fixture
def engine() -> FakeDockerEngine:
    return FakeDockerEngine()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def docker(engine: FakeDockerEngine, sleeps: List[float]) -> DockerClient:
    return DockerClient(engine, retry_policy=RetryPolicy(max_attempts=3, base_delay=5.0, sleep=sleeps.append))


def stage_family(engine: FakeDockerEngine, family: ImageFamily, suffix: str = SUFFIX, *, remote: bool = True) -> Dict[str, str]:
    """Register every staging image of a family with well-behaved runtime output and growing sizes."""
    references: Dict[str, str] = {}
    stages: List[Optional[str]] = list(family.stage_names) if family.is_multi_stage else [None]
    for position, stage in enumerate(stages, start=1):
        reference = family.staging_reference(REGISTRY, suffix, stage)
        engine.add_image(reference, size=position * 100 * 1024 * 1024, remote=remote)
        references[stage or ""] = reference

    if family.name == "php":
        modules = {"prod": "Core\nopcache\n", "dev": "Core\nxdebug\n", "test": "Core\npcov\n"}
        for stage, output in modules.items():
            if stage in references:
                engine.run_outputs[(references[stage], ("php", "-m"))] = (0, output)
        if "prod" in references:
            engine.run_outputs[(references["prod"], ("whoami",))] = (0, "www\n")
    return references
