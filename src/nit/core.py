"""
nit: parallel git across many repositories.

Discovers Git repositories under one or more root directories, runs a single
git subcommand in each of them concurrently, and prints one condensed line
per repository.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import signal
import subprocess
import sys
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from ._version import __version__
from .formatters import OutputFormatter, ResultPrinter
from .schema import get_tool_schema

logger = logging.getLogger(__name__)

# =============================================================================
# Errors
# =============================================================================


class NitError(Exception):
    """Base error for nit."""


class DiscoveryAccessError(NitError):
    """Raised when a root directory cannot be opened at all."""

    def __init__(self, root: Path, reason: str):
        super().__init__(f"Cannot open root {root}: {reason}")
        self.root = root
        self.reason = reason


class ConfigError(NitError):
    """Raised when the run configuration is unusable."""


class StatusParseError(NitError):
    """Raised when porcelain status output cannot be understood."""


# =============================================================================
# Domain Models
# =============================================================================


class CommandKind(StrEnum):
    """How a git subcommand's outcome is rendered."""

    OPTIMIZED = "optimized"  # condensed status line
    PASSTHROUGH = "passthrough"  # git's own output


class RunMode(StrEnum):
    """Where repositories are discovered."""

    CWD = "cwd"
    ROOTS = "roots"


class UrlScheme(StrEnum):
    """Remote URL scheme to force for every git invocation."""

    SSH = "ssh"
    HTTPS = "https"

    @property
    def config_args(self) -> tuple[str, str]:
        if self is UrlScheme.SSH:
            return ("-c", "url.git@github.com:.insteadOf=https://github.com/")
        return ("-c", "url.https://github.com/.insteadOf=git@github.com:")


OPTIMIZED_COMMANDS = frozenset({"pull", "fetch", "status"})
PRIMARY_BRANCHES = frozenset({"main", "master"})
STATUS_QUERY = ("status", "--porcelain=v2", "--branch")

# Exit codes synthesized for invocations that never produced one of their own.
LAUNCH_FAILURE_CODE = 127
TIMEOUT_CODE = 124
INTERRUPTED_CODE = 130
INTERNAL_ERROR_CODE = 1


def classify_command(command: str) -> CommandKind:
    """Map a git subcommand name to its rendering behavior."""
    if command in OPTIMIZED_COMMANDS:
        return CommandKind.OPTIMIZED
    return CommandKind.PASSTHROUGH


@dataclass(frozen=True)
class ScanDepth:
    """How many directory levels below a root are searched.

    ``limit`` of None means unlimited.
    """

    limit: int | None = 1

    @classmethod
    def parse(cls, value: str) -> ScanDepth:
        normalized = value.strip()
        if normalized.lower() == "all":
            return cls(None)
        try:
            depth = int(normalized)
        except ValueError:
            raise ConfigError(
                f'invalid scan depth: {value}. Use a positive integer or "all".'
            ) from None
        if depth < 1:
            raise ConfigError('scan depth must be a positive integer or "all"')
        return cls(depth)

    @property
    def is_unlimited(self) -> bool:
        return self.limit is None

    def __str__(self) -> str:
        return "all" if self.limit is None else str(self.limit)


@dataclass(frozen=True)
class Repository:
    """A directory holding a ``.git`` entry."""

    path: Path
    root: Path | None = None

    @property
    def name(self) -> str:
        return self.path.name or str(self.path)


@dataclass(frozen=True)
class StatusSummary:
    """Condensed branch and working tree state of a repository."""

    branch: str
    upstream: str = ""
    ahead: int = 0
    behind: int = 0
    modified_count: int = 0
    untracked_count: int = 0

    @property
    def has_upstream(self) -> bool:
        return bool(self.upstream)

    @property
    def on_primary_branch(self) -> bool:
        return self.branch in PRIMARY_BRANCHES

    @property
    def is_clean(self) -> bool:
        return not (self.modified_count or self.untracked_count or self.ahead or self.behind)

    def to_dict(self) -> dict:
        return {
            "branch": self.branch,
            "upstream": self.upstream,
            "ahead": self.ahead,
            "behind": self.behind,
            "modified_count": self.modified_count,
            "untracked_count": self.untracked_count,
            "clean": self.is_clean,
        }


@dataclass(frozen=True)
class Job:
    """One git subcommand to run in one repository."""

    repository: Repository
    command: str
    args: tuple[str, ...] = ()

    @property
    def kind(self) -> CommandKind:
        return classify_command(self.command)

    @property
    def git_args(self) -> tuple[str, ...]:
        """Arguments handed to git for the job's own command."""
        if self.command == "status":
            # status is answered by the porcelain query itself
            return (*STATUS_QUERY, *self.args)
        return (self.command, *self.args)


@dataclass(frozen=True)
class Invocation:
    """Captured outcome of one git process."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class JobResult:
    """Outcome of executing a Job.

    ``raw_status`` is set instead of ``summary`` when the status query of an
    optimized command could not be parsed.
    """

    job: Job
    returncode: int
    stdout: str = ""
    stderr: str = ""
    summary: StatusSummary | None = None
    raw_status: str | None = None
    dry_run: bool = False

    @property
    def repository(self) -> Repository:
        return self.job.repository

    @property
    def path(self) -> Path:
        return self.job.repository.path

    @property
    def name(self) -> str:
        return self.job.repository.name

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def error(self) -> str:
        if self.success:
            return ""
        return self.stderr.strip() or self.stdout.strip() or f"exit code {self.returncode}"

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "name": self.name,
            "root": str(self.repository.root) if self.repository.root else None,
            "command": self.job.command,
            "args": list(self.job.args),
            "kind": self.job.kind.value,
            "success": self.success,
            "returncode": self.returncode,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "error": self.error,
            "dry_run": self.dry_run,
            "summary": self.summary.to_dict() if self.summary else None,
            "raw_status": self.raw_status,
        }


@dataclass(frozen=True)
class RunSummary:
    """Aggregate outcome of a run."""

    total: int = 0
    failed: int = 0

    @classmethod
    def from_results(cls, results: Sequence[JobResult]) -> RunSummary:
        return cls(total=len(results), failed=sum(1 for r in results if not r.success))

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def message(self) -> str:
        return f"{self.failed} of {self.total} repositories failed."

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "failed": self.failed,
            "succeeded": self.total - self.failed,
            "success": self.success,
        }


# =============================================================================
# Repository Discovery
# =============================================================================


def find_repositories(
    root: Path,
    depth: ScanDepth = ScanDepth(),
    *,
    owner: Path | None = None,
) -> list[Repository]:
    """Find Git repositories under ``root`` honoring ``depth``.

    A directory holding a ``.git`` entry (a directory, or a file for worktrees
    and submodules) is a repository and is never descended into. Symlinked
    directories are followed unless they lead back to a directory on the
    current descent path. A repository reachable through several paths is
    reported once, under the first path reached.

    Raises:
        DiscoveryAccessError: if ``root`` itself cannot be opened.
    """
    root = Path(os.path.abspath(root))
    if os.path.exists(root / ".git"):
        return [Repository(root, owner)]

    try:
        subdirs = _subdirectories(root)
    except OSError as e:
        raise DiscoveryAccessError(root, e.strerror or str(e)) from e

    repos: list[Repository] = []
    _scan(subdirs, 0, depth.limit, owner, (os.path.realpath(root),), set(), repos)
    repos.sort(key=lambda r: str(r.path))
    return repos


def _subdirectories(directory: Path) -> list[Path]:
    subdirs = []
    with os.scandir(directory) as entries:
        for entry in entries:
            try:
                if entry.is_dir():
                    subdirs.append(Path(entry.path))
            except OSError:
                continue
    subdirs.sort(key=str)
    return subdirs


def _scan(
    subdirs: list[Path],
    level: int,
    limit: int | None,
    owner: Path | None,
    ancestors: tuple[str, ...],
    found: set[str],
    repos: list[Repository],
) -> None:
    # ancestors: real paths of the directories being descended through
    for path in subdirs:
        real = os.path.realpath(path)
        if real in ancestors:
            logger.debug("Skipping symlink cycle at %s", path)
            continue

        if os.path.exists(path / ".git"):
            if real in found:
                logger.debug("Skipping %s: repository already found", path)
            else:
                found.add(real)
                repos.append(Repository(path, owner))
            continue

        next_level = level + 1
        if limit is not None and next_level >= limit:
            continue
        try:
            children = _subdirectories(path)
        except OSError as e:
            logger.warning("Skipping unreadable directory %s: %s", path, e.strerror or e)
            continue
        _scan(children, next_level, limit, owner, (*ancestors, real), found, repos)


def discover_repositories(
    roots: Sequence[Path],
    depth: ScanDepth = ScanDepth(),
    *,
    grouped: bool = False,
) -> list[Repository]:
    """Discover repositories under every root, sorted and deduplicated.

    With ``grouped`` each repository records its owning root and the result is
    ordered by root first; otherwise it is ordered by path alone.
    """
    seen: set[Path] = set()
    found: list[Repository] = []
    for root in sorted(roots, key=str):
        for repo in find_repositories(root, depth, owner=root if grouped else None):
            if repo.path in seen:
                continue
            seen.add(repo.path)
            found.append(repo)

    if grouped:
        found.sort(key=lambda r: (str(r.root), str(r.path)))
    else:
        found.sort(key=lambda r: str(r.path))
    return found


# =============================================================================
# Git Invocation
# =============================================================================


class ProcessRegistry:
    """Track running git processes so an interrupted run can reap them."""

    def __init__(self):
        self._lock = threading.Lock()
        self._processes: set[subprocess.Popen] = set()
        self._closed = False

    def add(self, process: subprocess.Popen) -> bool:
        """Register a process. Returns False once the registry is closed."""
        with self._lock:
            if self._closed:
                return False
            self._processes.add(process)
            return True

    def discard(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(process)

    def terminate_all(self) -> None:
        """Close the registry and terminate every process still running."""
        with self._lock:
            self._closed = True
            processes = list(self._processes)
        for process in processes:
            if process.poll() is None:
                logger.debug("Terminating git process %s", process.pid)
                process.terminate()


class GitInvoker:
    """Run git against a repository and capture its outcome.

    ``run`` never raises for per-repository problems: a binary that cannot be
    started, a non-zero exit and a timeout all come back as an Invocation with
    a non-zero exit code and an explanation on stderr.
    """

    dry_run = False

    def __init__(
        self,
        git: str = "git",
        url_scheme: UrlScheme | None = None,
        timeout: float | None = None,
        registry: ProcessRegistry | None = None,
    ):
        self.git = git
        self.url_scheme = url_scheme
        self.timeout = timeout
        self.registry = registry or ProcessRegistry()

    def command_line(self, repo_path: Path, args: Sequence[str]) -> list[str]:
        """Build the full git command line for a repository."""
        cmd = [self.git]
        if self.url_scheme is not None:
            # -c must precede the subcommand
            cmd.extend(self.url_scheme.config_args)
        cmd.extend(["-C", str(repo_path), *args])
        return cmd

    def run(self, repo_path: Path, args: Sequence[str]) -> Invocation:
        cmd = self.command_line(repo_path, args)
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        logger.debug("Running %s", shlex.join(cmd))

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
            )
        except OSError as e:
            return Invocation(LAUNCH_FAILURE_CODE, "", f"failed to start {self.git}: {e.strerror or e}")

        if not self.registry.add(process):
            process.kill()
            process.communicate()
            return Invocation(INTERRUPTED_CODE, "", "interrupted")

        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            stdout, stderr = process.communicate()
            logger.debug("Timed out after %ss: %s", self.timeout, shlex.join(cmd))
            return Invocation(TIMEOUT_CODE, stdout, f"timed out after {self.timeout:g}s")
        except BaseException:
            process.kill()
            process.wait()
            raise
        finally:
            self.registry.discard(process)

        logger.debug("Exit %s from %s", process.returncode, repo_path)
        return Invocation(process.returncode, stdout, stderr)


class DryRunInvoker(GitInvoker):
    """Stand-in that reports the command line instead of running it."""

    dry_run = True

    def run(self, repo_path: Path, args: Sequence[str]) -> Invocation:
        return Invocation(0, f"would execute: {shlex.join(self.command_line(repo_path, args))}")


# =============================================================================
# Status Parsing
# =============================================================================


def parse_status(output: str) -> StatusSummary:
    """Parse ``git status --porcelain=v2 --branch`` output.

    Ordinary, renamed and unmerged entries count as modified files. Ahead and
    behind counts are only kept when an upstream is configured.

    Raises:
        StatusParseError: if the branch header is missing or a line is not
            recognized.
    """
    branch: str | None = None
    upstream = ""
    ahead = behind = 0
    modified = untracked = 0

    for line in output.splitlines():
        if not line:
            continue
        if line.startswith("# "):
            key, _, value = line[2:].partition(" ")
            match key:
                case "branch.head":
                    branch = value
                case "branch.upstream":
                    upstream = value
                case "branch.ab":
                    ahead, behind = _parse_ahead_behind(value)
                case _:
                    # branch.oid, stash and future headers
                    continue
        elif line[:2] in ("1 ", "2 ", "u "):
            modified += 1
        elif line.startswith("? "):
            untracked += 1
        elif line.startswith("! "):
            continue
        else:
            raise StatusParseError(f"unexpected status line: {line!r}")

    if not branch:
        raise StatusParseError("missing branch header")
    if not upstream:
        ahead = behind = 0

    return StatusSummary(
        branch=branch,
        upstream=upstream,
        ahead=ahead,
        behind=behind,
        modified_count=modified,
        untracked_count=untracked,
    )


def _parse_ahead_behind(value: str) -> tuple[int, int]:
    # Format: +<ahead> -<behind>
    parts = value.split()
    if len(parts) != 2 or not parts[0].startswith("+") or not parts[1].startswith("-"):
        raise StatusParseError(f"malformed ahead/behind header: {value!r}")
    try:
        return int(parts[0][1:]), int(parts[1][1:])
    except ValueError:
        raise StatusParseError(f"malformed ahead/behind header: {value!r}") from None


# =============================================================================
# Job Execution
# =============================================================================


def execute_job(job: Job, invoker: GitInvoker) -> JobResult:
    """Run a job and build its result.

    Optimized commands that succeed are followed by a status query (``status``
    is the query itself). A status that cannot be parsed does not fail the
    job; the raw text is kept for display instead.
    """
    path = job.repository.path
    outcome = invoker.run(path, job.git_args)

    if invoker.dry_run or not outcome.ok or job.kind is CommandKind.PASSTHROUGH:
        return JobResult(
            job,
            outcome.returncode,
            outcome.stdout,
            outcome.stderr,
            dry_run=invoker.dry_run,
        )

    if job.command == "status":
        status_text = outcome.stdout
    else:
        query = invoker.run(path, STATUS_QUERY)
        status_text = query.stdout if query.ok else (query.stderr or query.stdout)

    try:
        summary = parse_status(status_text)
    except StatusParseError as e:
        logger.warning("Could not parse status of %s: %s", path, e)
        return JobResult(
            job,
            outcome.returncode,
            outcome.stdout,
            outcome.stderr,
            raw_status=status_text,
        )

    return JobResult(job, outcome.returncode, outcome.stdout, outcome.stderr, summary=summary)


class ResultCollector:
    """Gather job results from concurrent workers.

    Results are stored by job position. When ``on_ready`` is given, results are
    handed to it in job order as soon as every earlier result exists.
    """

    def __init__(self, total: int, on_ready: Callable[[JobResult], None] | None = None):
        self._lock = threading.Lock()
        self._results: list[JobResult | None] = [None] * total
        self._next = 0
        self._on_ready = on_ready

    def add(self, index: int, result: JobResult) -> None:
        with self._lock:
            if self._results[index] is not None:
                raise ValueError(f"Result for job {index} already collected")
            self._results[index] = result
            if self._on_ready is None:
                return
            while self._next < len(self._results):
                ready = self._results[self._next]
                if ready is None:
                    break
                self._on_ready(ready)
                self._next += 1

    @property
    def complete(self) -> bool:
        with self._lock:
            return all(r is not None for r in self._results)

    def results(self) -> list[JobResult]:
        with self._lock:
            missing = [i for i, r in enumerate(self._results) if r is None]
            if missing:
                raise RuntimeError(f"Results missing for jobs {missing}")
            return list(self._results)  # type: ignore[arg-type]


class Dispatcher:
    """Run jobs on a bounded pool of worker threads.

    ``workers`` of 0 starts one worker per job.
    """

    def __init__(self, invoker: GitInvoker, workers: int = 0):
        if workers < 0:
            raise ValueError("workers must be 0 (unlimited) or positive")
        self.invoker = invoker
        self.workers = workers

    def pool_size(self, job_count: int) -> int:
        if self.workers == 0:
            return job_count
        return min(self.workers, job_count)

    def run(
        self,
        jobs: Sequence[Job],
        on_ready: Callable[[JobResult], None] | None = None,
    ) -> list[JobResult]:
        """Execute every job; exactly one result per job, in job order."""
        collector = ResultCollector(len(jobs), on_ready)
        if not jobs:
            return []

        size = self.pool_size(len(jobs))
        if size <= 1:
            for index, job in enumerate(jobs):
                collector.add(index, self._run_job(job))
            return collector.results()

        with ThreadPoolExecutor(max_workers=size, thread_name_prefix="nit") as executor:
            futures = {executor.submit(self._run_job, job): i for i, job in enumerate(jobs)}
            try:
                for future in as_completed(futures):
                    collector.add(futures[future], future.result())
            except BaseException:
                # Reap children before the executor waits on their workers
                executor.shutdown(wait=False, cancel_futures=True)
                self.invoker.registry.terminate_all()
                raise

        return collector.results()

    def _run_job(self, job: Job) -> JobResult:
        try:
            return execute_job(job, self.invoker)
        except Exception as e:
            logger.exception("Job for %s failed unexpectedly", job.repository.path)
            return JobResult(job, INTERNAL_ERROR_CODE, "", str(e) or type(e).__name__)


# =============================================================================
# Fleet Manager
# =============================================================================


class FleetManager:
    """Run one git command across the repositories under a root."""

    grouped = False

    def __init__(
        self,
        root_path: Path,
        depth: ScanDepth = ScanDepth(),
        max_workers: int = 0,
        *,
        invoker: GitInvoker | None = None,
    ):
        self.roots = [root_path.resolve()]
        self.depth = depth
        self.dispatcher = Dispatcher(invoker or GitInvoker(), max_workers)
        self._repositories: list[Repository] | None = None

    @property
    def invoker(self) -> GitInvoker:
        return self.dispatcher.invoker

    def discover_repositories(self) -> list[Repository]:
        """Discover all Git repositories under the root(s)."""
        if self._repositories is None:
            self._repositories = discover_repositories(self.roots, self.depth, grouped=self.grouped)
        return self._repositories

    def build_jobs(self, command: str, args: Sequence[str] = ()) -> list[Job]:
        return [Job(repo, command, tuple(args)) for repo in self.discover_repositories()]

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        on_ready: Callable[[JobResult], None] | None = None,
    ) -> list[JobResult]:
        """Run ``git <command> <args>`` in every repository."""
        jobs = self.build_jobs(command, args)
        logger.debug(
            "Dispatching %d jobs (%s) with %d workers",
            len(jobs),
            classify_command(command).value,
            self.dispatcher.pool_size(len(jobs)),
        )
        return self.dispatcher.run(jobs, on_ready)


class MultiRootFleetManager(FleetManager):
    """Run one git command across repositories under several roots."""

    grouped = True

    def __init__(
        self,
        roots: Sequence[Path],
        depth: ScanDepth = ScanDepth(),
        max_workers: int = 0,
        *,
        invoker: GitInvoker | None = None,
    ):
        self.roots = sorted({r.resolve() for r in roots}, key=str)
        self.depth = depth
        self.dispatcher = Dispatcher(invoker or GitInvoker(), max_workers)
        self._repositories: list[Repository] | None = None


# =============================================================================
# Configuration
# =============================================================================

ROOTS_ENV_VAR = "NIT_ROOTS"
GIT_ENV_VAR = "NIT_GIT"
ROOTS_PROGRAMS = frozenset({"nitr"})


def mode_for_program(program: str) -> RunMode:
    """Pick the run mode from the name the tool was invoked as."""
    if Path(program).stem in ROOTS_PROGRAMS:
        return RunMode.ROOTS
    return RunMode.CWD


def default_workers() -> int:
    return os.cpu_count() or 1


def read_roots_file(roots_file: Path) -> list[Path]:
    """Read every root entry from a roots file, without checking existence.

    Supports:
    - Comments starting with #
    - Environment variables: $HOME, ${HOME}, $DEV_ROOT, etc.
    - Tilde expansion: ~/path
    """
    entries = []
    try:
        with open(roots_file.expanduser()) as f:
            for line in f:
                path = _parse_roots_line(line)
                if path is not None:
                    entries.append(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise ConfigError(f"Cannot read roots file {roots_file}: {e.strerror or e}") from e
    return entries


def _parse_roots_line(line: str) -> Path | None:
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    # Expand environment variables first, then tilde
    return Path(os.path.expandvars(line)).expanduser()


def load_roots_file(roots_file: Path) -> list[Path]:
    """Load the existing root directories listed in a roots file."""
    roots = []
    for path in read_roots_file(roots_file):
        if path.is_dir():
            roots.append(path)
        else:
            logger.warning("Ignoring root %s from %s: not a directory", path, roots_file)
    return roots


def resolve_roots_file() -> Path | None:
    """Auto-resolve the roots file from environment and standard locations.

    Priority order:
    1. $NIT_ROOTS environment variable
    2. ~/.config/nit/roots (XDG-compliant)
    3. ~/.nit-roots (legacy fallback)
    """
    env_roots = os.environ.get(ROOTS_ENV_VAR)
    if env_roots:
        env_path = Path(env_roots).expanduser()
        if env_path.is_file():
            return env_path

    xdg_path = Path.home() / ".config" / "nit" / "roots"
    if xdg_path.is_file():
        return xdg_path

    legacy_path = Path.home() / ".nit-roots"
    if legacy_path.is_file():
        return legacy_path

    return None


def default_roots_file() -> Path:
    """Where a new roots file is created."""
    env_roots = os.environ.get(ROOTS_ENV_VAR)
    if env_roots:
        return Path(env_roots).expanduser()
    return Path.home() / ".config" / "nit" / "roots"


def add_root(roots_file: Path, root: Path) -> bool:
    """Append a root to the roots file. Returns False if already present."""
    root = root.expanduser().resolve()
    if not root.is_dir():
        raise ConfigError(f"Not a directory: {root}")
    if any(_same_path(entry, root) for entry in read_roots_file(roots_file)):
        return False

    roots_file = roots_file.expanduser()
    roots_file.parent.mkdir(parents=True, exist_ok=True)
    existing = roots_file.read_text() if roots_file.exists() else ""
    with open(roots_file, "a") as f:
        if existing and not existing.endswith("\n"):
            f.write("\n")
        f.write(f"{root}\n")
    return True


def remove_root(roots_file: Path, root: Path) -> bool:
    """Remove a root from the roots file, keeping comments and other lines."""
    roots_file = roots_file.expanduser()
    if not roots_file.exists():
        return False
    target = root.expanduser().absolute()

    kept = []
    removed = False
    for line in roots_file.read_text().splitlines(keepends=True):
        path = _parse_roots_line(line)
        if path is not None and _same_path(path, target):
            removed = True
            continue
        kept.append(line)

    if removed:
        roots_file.write_text("".join(kept))
    return removed


def _same_path(a: Path, b: Path) -> bool:
    return os.path.abspath(a) == os.path.abspath(b) or a.resolve() == b.resolve()


@dataclass(frozen=True)
class RunConfig:
    """Everything a run needs, resolved once at startup."""

    mode: RunMode = RunMode.CWD
    roots: tuple[Path, ...] = ()
    depth: ScanDepth = ScanDepth()
    workers: int = 1
    dry_run: bool = False
    url_scheme: UrlScheme | None = None
    timeout: float | None = None
    json_output: bool = False
    git: str = "git"

    @classmethod
    def resolve(
        cls,
        program: str,
        cwd: Path,
        *,
        depth: str = "1",
        workers: int | None = None,
        dry_run: bool = False,
        url_scheme: UrlScheme | None = None,
        timeout: float | None = None,
        json_output: bool = False,
        roots_file: Path | None = None,
    ) -> RunConfig:
        """Build the run configuration from options and the environment.

        Raises:
            ConfigError: for an invalid depth, worker count or roots file.
        """
        if workers is not None and workers < 0:
            raise ConfigError("workers must be 0 (unlimited) or positive")
        if timeout is not None and timeout <= 0:
            raise ConfigError("timeout must be positive")

        mode = RunMode.ROOTS if roots_file is not None else mode_for_program(program)
        if mode is RunMode.ROOTS:
            resolved = roots_file or resolve_roots_file()
            if resolved is None:
                raise ConfigError("No roots file found. Add a root with 'nit roots add <path>'.")
            roots = tuple(load_roots_file(resolved))
            if not roots:
                raise ConfigError(f"No valid roots found in {resolved}")
        else:
            roots = (cwd,)

        return cls(
            mode=mode,
            roots=roots,
            depth=ScanDepth.parse(depth),
            workers=default_workers() if workers is None else workers,
            dry_run=dry_run,
            url_scheme=url_scheme,
            timeout=timeout,
            json_output=json_output,
            git=os.environ.get(GIT_ENV_VAR) or "git",
        )

    @property
    def grouped(self) -> bool:
        return self.mode is RunMode.ROOTS

    def make_invoker(self, registry: ProcessRegistry | None = None) -> GitInvoker:
        invoker_cls = DryRunInvoker if self.dry_run else GitInvoker
        return invoker_cls(
            git=self.git,
            url_scheme=self.url_scheme,
            timeout=self.timeout,
            registry=registry,
        )

    def make_fleet(self, registry: ProcessRegistry | None = None) -> FleetManager:
        invoker = self.make_invoker(registry)
        if self.grouped:
            return MultiRootFleetManager(list(self.roots), self.depth, self.workers, invoker=invoker)
        return FleetManager(self.roots[0], self.depth, self.workers, invoker=invoker)


# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="nit",
    help="Run one git command across many repositories in parallel.",
    add_completion=False,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"nit {__version__}")
        raise typer.Exit()


def schema_callback(value: bool):
    """Print the tool schema and exit."""
    if value:
        print(json.dumps(get_tool_schema(), indent=2))
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Send nit's log records to stderr through rich."""
    package_logger = logging.getLogger("nit")
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not any(isinstance(h, RichHandler) for h in package_logger.handlers):
        package_logger.addHandler(
            RichHandler(console=Console(stderr=True), show_path=False, show_time=verbose)
        )


def make_console() -> Console:
    return Console(highlight=False, soft_wrap=True, emoji=False)


def _fail(console: Console, message: str, code: int = 2):
    console.print(f"[red]Error: {escape(message)}[/]")
    raise typer.Exit(code)


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


@app.command(
    context_settings={
        "allow_extra_args": True,
        "ignore_unknown_options": True,
        "allow_interspersed_args": False,
    },
    no_args_is_help=True,
)
def main(
    git_args: list[str] = typer.Argument(
        None,
        metavar="GIT_COMMAND [ARGS]...",
        help="git subcommand and its arguments, or 'roots add|rm|list'",
        show_default=False,
    ),
    depth: str = typer.Option(
        "1",
        "--depth",
        "-d",
        help='Directory levels to search below each root (positive integer or "all")',
    ),
    workers: int = typer.Option(
        None,
        "--workers",
        "-n",
        help="Maximum concurrent git processes (default: CPU count, 0 = unlimited)",
        show_default=False,
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Print the git commands that would run without executing them",
    ),
    ssh: bool = typer.Option(
        False,
        "--ssh",
        help="Force SSH URLs (git@github.com:) for all remotes",
    ),
    https: bool = typer.Option(
        False,
        "--https",
        help="Force HTTPS URLs (https://github.com/) for all remotes",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Give up on a git process after this many seconds",
        show_default=False,
    ),
    roots: Path = typer.Option(
        None,
        "--roots",
        "-r",
        help="File containing repository root paths (one per line)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug details to stderr",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    schema: bool = typer.Option(
        False,
        "--schema",
        callback=schema_callback,
        is_eager=True,
        help="Output MCP-compatible tool schema for AI agents",
    ),
):
    """nit: run one git command across many repositories in parallel.

    Invoked as 'nit' it works on the repositories below the current directory;
    invoked as 'nitr' (or with --roots) it works on every configured root.
    """
    configure_logging(verbose)
    console = make_console()

    if not git_args:
        _fail(console, "No git command given. Use --help for usage information.")

    if git_args[0] == "roots":
        roots_command(console, git_args[1:], roots)
        return

    if ssh and https:
        _fail(console, "--ssh and --https are mutually exclusive")
    url_scheme = UrlScheme.SSH if ssh else UrlScheme.HTTPS if https else None

    try:
        config = RunConfig.resolve(
            sys.argv[0],
            Path.cwd(),
            depth=depth,
            workers=workers,
            dry_run=dry_run,
            url_scheme=url_scheme,
            timeout=timeout,
            json_output=json_output,
            roots_file=roots,
        )
    except ConfigError as e:
        _fail(console, str(e))

    previous_handler = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        summary = run_fleet(config, git_args[0], git_args[1:], console)
    except NitError as e:
        _fail(console, str(e))
    except KeyboardInterrupt:
        console.print("[red]Interrupted[/]")
        raise typer.Exit(INTERRUPTED_CODE) from None
    finally:
        signal.signal(signal.SIGTERM, previous_handler)

    if not summary.success:
        raise typer.Exit(1)


def run_fleet(config: RunConfig, command: str, args: Sequence[str], console: Console) -> RunSummary:
    """Discover, dispatch and render one run. Returns its summary."""
    formatter = OutputFormatter(console, use_json=config.json_output)
    fleet = config.make_fleet(ProcessRegistry())
    repositories = fleet.discover_repositories()

    if config.dry_run and not config.json_output:
        formatter.print_dry_run_banner(__version__)

    if not repositories:
        if config.json_output:
            formatter.print_results_json([], fleet.roots if config.grouped else None, RunSummary())
        else:
            console.print("[dim]No git repositories found[/]")
        return RunSummary()

    groups = fleet.roots if config.grouped else None
    if config.json_output:
        results = fleet.run(command, args)
        summary = RunSummary.from_results(results)
        formatter.print_results_json(results, groups, summary)
        return summary

    printer = ResultPrinter(formatter, repositories, groups)
    if classify_command(command) is CommandKind.PASSTHROUGH:
        # passthrough output does not depend on other repositories: stream it
        results = fleet.run(command, args, on_ready=printer)
    else:
        results = fleet.run(command, args)
        for result in results:
            printer(result)
    printer.finish()

    summary = RunSummary.from_results(results)
    formatter.print_run_summary(summary)
    return summary


def roots_command(console: Console, args: Sequence[str], roots_file: Path | None) -> None:
    """Handle 'roots add|rm|list'."""
    path = roots_file or resolve_roots_file() or default_roots_file()

    match list(args):
        case ["list"]:
            entries = read_roots_file(path)
            if not entries:
                console.print(f"[dim]No roots configured in {escape(str(path))}[/]")
            for entry in entries:
                marker = "" if entry.is_dir() else "  [red](missing)[/]"
                console.print(f"{escape(str(entry))}{marker}")
        case ["add", target]:
            try:
                added = add_root(path, Path(target))
            except ConfigError as e:
                _fail(console, str(e))
            resolved = escape(str(Path(target).expanduser().resolve()))
            if added:
                console.print(f"[green]Added[/] {resolved} to {escape(str(path))}")
            else:
                console.print(f"[dim]{resolved} is already in {escape(str(path))}[/]")
        case ["rm", target]:
            if remove_root(path, Path(target)):
                console.print(f"[green]Removed[/] {escape(target)} from {escape(str(path))}")
            else:
                _fail(console, f"{target} is not in {path}", code=1)
        case _:
            _fail(console, "usage: nit roots add <path> | rm <path> | list")
