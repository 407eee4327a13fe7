"""Pytest configuration and fixtures"""

import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Generator, Optional

# Settings are read at import time; keep test runs out of ./repositories
os.environ.setdefault("GITBRIDGE_STORAGE_ROOT", tempfile.mkdtemp(prefix="gitbridge_test_"))

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from gitbridge.core.config import settings
from gitbridge.core.git.git_types import ZERO_ID
from gitbridge.core.server_config import ServerConfig
from gitbridge.infrastructure.git_protocol import PktLine
from gitbridge.infrastructure.hooks import HookContext
from gitbridge.infrastructure.sinks import BufferedSink

NEW_REF = "68839ad5d8bedf1147c214e4897ca6ad8afbfecc"

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")


def receive_pack_body(
    branch: str = "refs/heads/master",
    old_ref: str = ZERO_ID,
    new_ref: str = NEW_REF,
    capabilities: str = "report-status side-band-64k agent=git/2.8.3",
    pack: bytes = b"PACK\x00\x00\x00\x02\x00\x00\x00\x00",
) -> bytes:
    """Push body: one ref command, flush, then (fake) pack data"""
    command = f"{old_ref} {new_ref} {branch}\x00{capabilities}"
    return PktLine.encode(command) + PktLine.FLUSH_PKT + pack


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Empty repository storage root"""
    root = tmp_path / "repositories"
    root.mkdir()
    return root


@pytest.fixture
def server_config(storage_root: Path) -> ServerConfig:
    """Default hook configuration: accept pushes, deny creation"""
    return ServerConfig(storage_root=storage_root)


@pytest.fixture
def sink() -> BufferedSink:
    return BufferedSink()


@pytest.fixture
def make_context(sink: BufferedSink) -> Callable[..., HookContext]:
    """Factory for hook contexts writing into the buffered sink"""

    def factory(
        branch: str = "refs/heads/master",
        repository: str = "adam/project.git",
        repo_exists: bool = True,
        authorization: Optional[str] = None,
    ) -> HookContext:
        return HookContext(
            sink,
            repository=repository,
            branch=branch,
            commit=NEW_REF,
            repo_exists=repo_exists,
            old_ref=ZERO_ID,
            agent="git/2.8.3",
            capabilities=("report-status", "side-band-64k"),
            authorization=authorization,
            correlation_id="test-correlation-id",
        )

    return factory


@pytest.fixture
def bare_repo(storage_root: Path) -> Generator[Path, None, None]:
    """Bare repository adam/project.git with one commit on master"""
    if shutil.which("git") is None:
        pytest.skip("git binary not available")

    repo_path = storage_root / "adam" / "project.git"
    repo_path.parent.mkdir(parents=True)
    subprocess.run(["git", "init", "--bare", str(repo_path)], check=True, capture_output=True)

    work_dir = Path(tempfile.mkdtemp(prefix="gitbridge_work_"))
    env = dict(
        os.environ,
        GIT_AUTHOR_NAME="Test",
        GIT_AUTHOR_EMAIL="test@example.com",
        GIT_COMMITTER_NAME="Test",
        GIT_COMMITTER_EMAIL="test@example.com",
    )
    try:
        subprocess.run(["git", "init", "-q", "-b", "master", str(work_dir)], check=True, capture_output=True)
        (work_dir / "README").write_text("Hello, gitbridge!\n")
        subprocess.run(["git", "add", "README"], cwd=work_dir, check=True, capture_output=True)
        subprocess.run(
            ["git", "commit", "-q", "-m", "Initial commit"],
            cwd=work_dir, check=True, capture_output=True, env=env,
        )
        subprocess.run(
            ["git", "push", "-q", str(repo_path), "master"],
            cwd=work_dir, check=True, capture_output=True, env=env,
        )
        yield repo_path
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)


@pytest.fixture
def test_settings(monkeypatch: pytest.MonkeyPatch):
    """Global settings with per-test overrides rolled back"""
    monkeypatch.setattr(settings, "stream_progress", False)
    monkeypatch.setattr(settings, "hook_timeout", 5.0)
    return settings


@pytest_asyncio.fixture
async def make_client(test_settings):
    """Factory building an httpx client against an app with the given config"""
    from gitbridge.main import create_app

    clients = []

    async def factory(config: ServerConfig, process=None) -> AsyncClient:
        app = create_app(config)
        if process is not None:
            app.state.git_bridge.process = process
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()
