"""Git service: local clone management, commit resolution and diffs via git CLI."""

from __future__ import annotations

import logging
import os
import re
import stat
import subprocess
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote, urlsplit, urlunsplit

from syncher.exceptions import RepositoryError
from syncher.services.change_resolver import ChangeEntry, ChangeKind

if TYPE_CHECKING:
    from syncher.config import Settings

logger = logging.getLogger(__name__)

_COMMIT_RE = re.compile(r"^[0-9a-f]{4,40}$")

# Clone and pull talk to the remote; bound them so a hanging remote cannot block forever.
_GIT_NETWORK_TIMEOUT_SECONDS = 300

_ASKPASS_SCRIPT = '#!/bin/sh\nexec echo "$SYNCHER_GIT_PASSWORD"\n'

_STATUS_KINDS = {
    "A": ChangeKind.ADDED,
    "M": ChangeKind.MODIFIED,
    "T": ChangeKind.MODIFIED,
    "D": ChangeKind.REMOVED,
    "R": ChangeKind.RENAMED,
    "C": ChangeKind.COPIED,
}


class GitService:
    """Wraps git CLI operations on the local repository clone."""

    def __init__(
        self,
        repo_dir: Path,
        *,
        remote_url: str | None = None,
        branch: str | None = None,
        user: str | None = None,
        password: str | None = None,
        ssl_certificate: str | None = None,
        ssl_key: str | None = None,
        ssl_verify: bool = True,
    ) -> None:
        self.repo_dir = repo_dir
        self.remote_url = remote_url
        self.branch = branch
        self.user = user
        self.password = password
        self.ssl_certificate = ssl_certificate
        self.ssl_key = ssl_key
        self.ssl_verify = ssl_verify
        self._askpass_file: Path | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> GitService:
        """Create a git service from the repository settings."""
        return cls(
            settings.git_local_repository,
            remote_url=settings.git_remote_repository_url,
            branch=settings.git_branch or None,
            user=settings.git_user,
            password=settings.git_password,
            ssl_certificate=settings.git_certificate,
            ssl_key=settings.git_key,
            ssl_verify=settings.git_ssl_verify,
        )

    def _env(self) -> dict[str, str] | None:
        """Environment for git commands that may need credentials."""
        if self.password is None:
            return None
        if self._askpass_file is None:
            fd, name = tempfile.mkstemp(prefix="syncher-askpass-", suffix=".sh")
            with os.fdopen(fd, "w") as fh:
                fh.write(_ASKPASS_SCRIPT)
            os.chmod(name, stat.S_IRWXU)
            self._askpass_file = Path(name)
        env = dict(os.environ)
        env["GIT_ASKPASS"] = str(self._askpass_file)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["SYNCHER_GIT_PASSWORD"] = self.password
        return env

    def _config_args(self) -> list[str]:
        """``-c`` options for HTTPS remotes."""
        args: list[str] = []
        if self.remote_url is None or urlsplit(self.remote_url).scheme != "https":
            return args
        if self.ssl_certificate is not None:
            args += ["-c", f"http.sslCert={self.ssl_certificate}"]
        if self.ssl_key is not None:
            args += ["-c", f"http.sslKey={self.ssl_key}"]
        if not self.ssl_verify:
            args += ["-c", "http.sslVerify=false"]
        return args

    def _run(
        self,
        *args: str,
        check: bool = True,
        text: bool = True,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess:
        """Run a git command in the repository directory."""
        return subprocess.run(
            ["git", *args],
            cwd=cwd or self.repo_dir,
            check=check,
            capture_output=True,
            text=text,
            env=self._env(),
            timeout=timeout,
        )

    def _remote_url_with_user(self) -> str:
        if self.remote_url is None:
            raise RepositoryError("No remote URL is configured")
        parts = urlsplit(self.remote_url)
        if self.user is None or parts.username or parts.scheme not in ("http", "https"):
            return self.remote_url
        netloc = f"{quote(self.user, safe='')}@{parts.netloc}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    # ------------------------------------------------------------------
    # Repository preparation
    # ------------------------------------------------------------------

    def is_repository(self) -> bool:
        """Return whether the local directory is the root of a git clone."""
        return (self.repo_dir / ".git").exists()

    def prepare(self) -> None:
        """Make the latest remote state available in the local clone.

        Clones when the local repository does not exist yet, switches to the
        configured branch and pulls when a remote is configured.
        """
        try:
            if not self.is_repository():
                if self.remote_url is None:
                    msg = f"{self.repo_dir} is not a git repository and no remote URL is configured"
                    raise RepositoryError(msg)
                self.clone()
                self.checkout_branch()
                logger.debug("Initialised repository %s", self.repo_dir.resolve())
            else:
                self.checkout_branch()
                if self.remote_url is not None:
                    self.pull()
                    logger.debug("Pulled %s", self.repo_dir.resolve())
        except subprocess.CalledProcessError as exc:
            stderr = exc.stderr.strip() if exc.stderr else "no stderr"
            msg = f"{subprocess.list2cmdline(exc.cmd)} failed (exit {exc.returncode}): {stderr}"
            raise RepositoryError(msg) from exc
        except subprocess.TimeoutExpired as exc:
            raise RepositoryError(f"git command timed out after {exc.timeout}s") from exc
        except FileNotFoundError as exc:
            raise RepositoryError(f"git is not available: {exc}") from exc

    def clone(self) -> None:
        """Clone the remote repository into the local directory."""
        self.repo_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Execute: git clone %s %s", self.remote_url, self.repo_dir.resolve())
        self._run(
            *self._config_args(),
            "clone",
            self._remote_url_with_user(),
            str(self.repo_dir.resolve()),
            cwd=self.repo_dir.parent,
            timeout=_GIT_NETWORK_TIMEOUT_SECONDS,
        )

    def checkout_branch(self) -> None:
        """Switch to the configured branch, creating a tracking branch if needed."""
        if self.branch is None:
            return
        current = self._run("rev-parse", "--abbrev-ref", "HEAD", check=False).stdout.strip()
        if current == self.branch:
            return
        exists = self._run(
            "rev-parse", "--verify", "--quiet", f"refs/heads/{self.branch}", check=False
        ).returncode == 0
        logger.info('Switching repository from branch "%s" to branch "%s"', current, self.branch)
        if exists:
            self._run("checkout", self.branch)
        else:
            self._run("checkout", "-b", self.branch, "--track", f"origin/{self.branch}")

    def pull(self) -> None:
        """Fast-forward the local branch from its remote."""
        logger.info("Execute: git pull at %s", self.repo_dir)
        self._run(
            *self._config_args(),
            "pull",
            "--ff-only",
            timeout=_GIT_NETWORK_TIMEOUT_SECONDS,
        )

    def close(self) -> None:
        """Remove the temporary credential helper, if any."""
        if self._askpass_file is not None:
            self._askpass_file.unlink(missing_ok=True)
            self._askpass_file = None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def head_commit(self) -> str | None:
        """Return the current HEAD commit hash, or None if the repo has no commits."""
        result = self._run("rev-parse", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def commit_exists(self, commit_hash: str) -> bool:
        """Check if a commit hash exists in the repo."""
        if not _COMMIT_RE.match(commit_hash):
            return False
        result = self._run("cat-file", "-t", commit_hash, check=False)
        return result.returncode == 0 and result.stdout.strip() == "commit"

    def diff(self, old_commit: str, new_commit: str) -> list[ChangeEntry]:
        """Return the file-level changes between two commits, in git's path order.

        Renames and copies are detected. Raises RepositoryError on git failures.
        """
        result = self._run(
            "diff",
            "--no-color",
            "--no-ext-diff",
            "--name-status",
            "-z",
            "-M",
            "-C",
            old_commit,
            new_commit,
            check=False,
        )
        if result.returncode != 0:
            raise RepositoryError(
                f"git diff {old_commit} {new_commit} failed: {result.stderr.strip()}"
            )
        return parse_name_status(result.stdout)

    def read_file_at_commit(self, commit_hash: str, file_path: str) -> bytes | None:
        """Return raw file content at a specific commit, or None if file doesn't exist there.

        Raises subprocess.CalledProcessError on unexpected git errors (corrupt repo,
        permission denied, etc.) so callers can distinguish "file missing" from "git broken".
        """
        if not _COMMIT_RE.match(commit_hash):
            logger.warning("Rejected invalid commit hash %r for file %s", commit_hash, file_path)
            return None
        result = self._run("show", f"{commit_hash}:{file_path}", check=False, text=False)
        if result.returncode == 0:
            return result.stdout
        stderr = result.stderr.decode("utf-8", errors="replace")
        if result.returncode == 128 and ("does not exist" in stderr or "but not in" in stderr):
            return None
        raise subprocess.CalledProcessError(
            result.returncode,
            f"git show {commit_hash}:{file_path}",
            output=result.stdout,
            stderr=stderr,
        )


def parse_name_status(output: str) -> list[ChangeEntry]:
    """Parse ``git diff --name-status -z`` output into change entries."""
    fields = output.split("\0")
    if fields and fields[-1] == "":
        fields.pop()
    entries: list[ChangeEntry] = []
    i = 0
    while i < len(fields):
        status = fields[i]
        kind = _STATUS_KINDS.get(status[:1])
        if kind in (ChangeKind.RENAMED, ChangeKind.COPIED):
            old_path, new_path = fields[i + 1], fields[i + 2]
            entries.append(ChangeEntry(kind, old_path=old_path, new_path=new_path))
            i += 3
            continue
        path = fields[i + 1]
        i += 2
        if kind is None:
            logger.error("Unknown change type %r for path %s", status, path)
        elif kind is ChangeKind.ADDED:
            entries.append(ChangeEntry(kind, new_path=path))
        else:
            entries.append(ChangeEntry(kind, old_path=path))
    return entries
