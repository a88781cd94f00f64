"""Shared test fixtures for the migration syncher."""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from syncher.config import Settings
from syncher.database import create_engine, ensure_admin_schema
from syncher.services.git_service import GitService
from syncher.services.script_runner import ScriptRunner

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path


class GitRepo:
    """Test helper that writes files and commits them with the git CLI."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def git(self, *args: str) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=self.path,
            check=True,
            capture_output=True,
            text=True,
        )
        return result.stdout.strip()

    def init(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)
        self.git("init", "-q")
        self.git("config", "user.email", "syncher@localhost")
        self.git("config", "user.name", "Syncher Tests")
        self.git("config", "commit.gpgsign", "false")

    def write(self, rel_path: str, content: str | bytes) -> None:
        target = self.path / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")

    def remove(self, rel_path: str) -> None:
        (self.path / rel_path).unlink()

    def commit(self, message: str = "change") -> str:
        self.git("add", "-A")
        self.git("commit", "-q", "--allow-empty", "-m", message)
        return self.git("rev-parse", "HEAD")


@pytest.fixture
def repo(tmp_path: Path) -> GitRepo:
    """A fresh git repository with one initial commit."""
    r = GitRepo(tmp_path / "repo")
    r.init()
    r.write("README.md", "schema repository\n")
    r.commit("initial")
    return r


@pytest.fixture
def git_service(repo: GitRepo) -> GitService:
    """Git service for the test repository (no remote, current branch)."""
    return GitService(repo.path)


@pytest.fixture
def test_settings(repo: GitRepo, tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "db" / "target.db"
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        debug=True,
        db_url=f"sqlite+aiosqlite:///{db_path}",
        git_local_repository=repo.path,
        git_branch="",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the administration tables in place."""
    engine, _ = create_engine(test_settings)
    await ensure_admin_schema(engine, test_settings.db_syncher_schema)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(
    db_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
async def script_runner(db_engine: AsyncEngine) -> AsyncGenerator[ScriptRunner]:
    """A connected script runner on the test database."""
    runner = ScriptRunner(db_engine)
    await runner.connect()
    yield runner
    await runner.close()
