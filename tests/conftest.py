"""Shared fixtures for nit tests."""

from __future__ import annotations

import io
import subprocess
import threading
from pathlib import Path

import pytest
from rich.console import Console

from nit.core import GitInvoker, Invocation

CLEAN_MAIN_STATUS = (
    "# branch.oid 0123456789abcdef0123456789abcdef01234567\n"
    "# branch.head main\n"
    "# branch.upstream origin/main\n"
    "# branch.ab +0 -0\n"
)

FEATURE_STATUS = (
    "# branch.oid 0123456789abcdef0123456789abcdef01234567\n"
    "# branch.head feature\n"
    "# branch.upstream origin/feature\n"
    "# branch.ab +1 -2\n"
)

NETWORK_ERROR = (
    "fatal: unable to access 'https://example.com/repo-c.git/': "
    "Could not resolve host: example.com\n"
)

FAKE_GIT_SCRIPT = f"""#!/bin/sh
# Stand-in for git: called as <script> -C <repo> <args...>
repo=$(basename "$2")
shift 2
if [ "$repo" = "repo-c" ]; then
    printf '%s' "{NETWORK_ERROR.strip()}" >&2
    exit 128
fi
if [ "$1" = "status" ]; then
    echo "# branch.oid 0123456789abcdef0123456789abcdef01234567"
    case "$repo" in
        repo-b)
            echo "# branch.head feature"
            echo "# branch.upstream origin/feature"
            echo "# branch.ab +1 -2"
            ;;
        *)
            echo "# branch.head main"
            echo "# branch.upstream origin/main"
            echo "# branch.ab +0 -0"
            ;;
    esac
    exit 0
fi
echo "$repo: git $*"
"""


class FakeInvoker(GitInvoker):
    """Invoker answering from a table instead of running git.

    ``responses`` maps repository name to subcommand to Invocation; anything
    missing succeeds silently.
    """

    def __init__(self, responses: dict[str, dict[str, Invocation]] | None = None):
        super().__init__()
        self.responses = responses or {}
        self.calls: list[tuple[str, tuple[str, ...]]] = []
        self._calls_lock = threading.Lock()

    def run(self, repo_path, args):
        with self._calls_lock:
            self.calls.append((repo_path.name, tuple(args)))
        return self.responses.get(repo_path.name, {}).get(args[0], Invocation(0))


@pytest.fixture(autouse=True)
def plain_terminal(monkeypatch):
    """Keep rich from emitting ANSI codes whatever the CI environment says."""
    for name in ("FORCE_COLOR", "TTY_COMPATIBLE", "TTY_INTERACTIVE", "NIT_ROOTS", "NIT_GIT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NO_COLOR", "1")


@pytest.fixture
def make_repo():
    """Factory creating a directory that looks like a repository."""

    def _make(path: Path, git_file: bool = False) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        if git_file:
            (path / ".git").write_text("gitdir: /elsewhere/.git/worktrees/x\n")
        else:
            (path / ".git").mkdir(exist_ok=True)
        return path

    return _make


@pytest.fixture
def console():
    """A plain-text console writing into memory; read with console.file.getvalue()."""
    return Console(
        file=io.StringIO(),
        width=200,
        color_system=None,
        highlight=False,
        soft_wrap=True,
        emoji=False,
    )


@pytest.fixture
def scenario_invoker():
    """repo-a clean, repo-b on feature 2 behind 1 ahead, repo-c unreachable."""
    failure = Invocation(128, "", NETWORK_ERROR)
    return FakeInvoker(
        {
            "repo-a": {"status": Invocation(0, CLEAN_MAIN_STATUS)},
            "repo-b": {"status": Invocation(0, FEATURE_STATUS)},
            "repo-c": {"fetch": failure, "pull": failure, "status": failure},
        }
    )


@pytest.fixture
def scenario_workspace(tmp_path, make_repo):
    workspace = tmp_path / "workspace"
    for name in ("repo-c", "repo-a", "repo-b"):
        make_repo(workspace / name)
    (workspace / "notes").mkdir()
    (workspace / "README.md").write_text("not a repository\n")
    return workspace


@pytest.fixture
def fake_git(tmp_path):
    """Executable shell script standing in for git."""
    script = tmp_path / "bin" / "fake-git"
    script.parent.mkdir()
    script.write_text(FAKE_GIT_SCRIPT)
    script.chmod(0o755)
    return script


@pytest.fixture
def write_script(tmp_path):
    """Factory for small executable shell scripts."""

    def _write(name: str, body: str) -> Path:
        script = tmp_path / "scripts" / name
        script.parent.mkdir(exist_ok=True)
        script.write_text(f"#!/bin/sh\n{body}\n")
        script.chmod(0o755)
        return script

    return _write


@pytest.fixture
def git_repo(tmp_path):
    """A real git repository with one commit on main."""
    repo_path = tmp_path / "real-repo"
    repo_path.mkdir()

    def git(*args: str) -> None:
        subprocess.run(["git", *args], cwd=repo_path, check=True, capture_output=True)

    git("init", "-b", "main")
    git("config", "user.name", "Test User")
    git("config", "user.email", "test@example.com")
    (repo_path / "README.md").write_text("# Test Repository\n")
    git("add", "README.md")
    git("commit", "-m", "Initial commit")
    return repo_path
