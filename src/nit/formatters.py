"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from .core import JobResult, Repository, RunSummary, StatusSummary

MAX_REPO_NAME_WIDTH = 24
GROUP_INDENT = "  "


def format_repo_name(name: str) -> str:
    """Format repo name with fixed width: truncate long names, pad short ones."""
    if len(name) > MAX_REPO_NAME_WIDTH:
        name = f"{name[: MAX_REPO_NAME_WIDTH - 4]}-..."
    return f"[{name:<{MAX_REPO_NAME_WIDTH}}]"


def compute_unique_display_names(repositories: Sequence[Repository]) -> dict[Path, str]:
    """Map each repository path to the name shown in its label.

    Repositories sharing a directory name are labelled with as many parent
    components as it takes to tell them apart, e.g. ``team-a/api``.
    """
    by_name: dict[str, list[Path]] = defaultdict(list)
    for repo in repositories:
        by_name[repo.name].append(repo.path)

    names: dict[Path, str] = {}
    for name, paths in by_name.items():
        if len(paths) == 1:
            names[paths[0]] = name
            continue
        for path in paths:
            names[path] = _shortest_unique_suffix(path, paths)
    return names


def _shortest_unique_suffix(path: Path, group: list[Path]) -> str:
    others = [other.parts for other in group if other != path]
    parts = path.parts
    # parts[0] is the filesystem anchor; needing it means the full path
    for count in range(2, len(parts)):
        tail = parts[-count:]
        if all(other[-count:] != tail for other in others):
            return "/".join(tail)
    return str(path)


def contract_home(path: Path, home: Path) -> str:
    """Display a path with the home directory shortened to ~."""
    try:
        relative = path.relative_to(home)
    except ValueError:
        return str(path)
    return "~" if relative == Path(".") else f"~/{relative}"


def condense(text: str) -> str:
    """Fold multi-line text into one line."""
    return "; ".join(line.strip() for line in text.splitlines() if line.strip())


def render_status_summary(summary: StatusSummary) -> str:
    """Render the condensed status legend.

    ✓ clean, ↓N behind, ↑N ahead, MN modified files, ?N untracked files.
    The branch is only named when it is not main or master.
    """
    parts = []
    if not summary.on_primary_branch:
        parts.append(summary.branch)

    if summary.is_clean:
        parts.append("✓")
    else:
        if summary.behind:
            parts.append(f"↓{summary.behind}")
        if summary.ahead:
            parts.append(f"↑{summary.ahead}")
        if summary.modified_count:
            parts.append(f"M{summary.modified_count}")
        if summary.untracked_count:
            parts.append(f"?{summary.untracked_count}")

    return " ".join(parts)


def render_result_lines(result: JobResult) -> list[str]:
    """Plain-text body of a repository's output, one entry per line."""
    if result.dry_run:
        return [result.stdout.strip()]
    if not result.success:
        return [f"✗ {condense(result.error)}"]
    if result.summary is not None:
        return [render_status_summary(result.summary)]
    if result.raw_status is not None:
        return [f"status unavailable: {condense(result.raw_status) or 'no output'}"]

    # git reports some successful commands on stderr only
    output = result.stdout.rstrip() or result.stderr.rstrip()
    lines = output.lstrip("\n").splitlines()
    return [line.rstrip() for line in lines] or ["✓"]


def _result_style(result: JobResult) -> str:
    if result.dry_run:
        return "dim"
    if not result.success:
        return "red"
    if result.summary is not None:
        return "green" if result.summary.is_clean else "yellow"
    if result.raw_status is not None:
        return "yellow"
    return ""


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False, home: Path | None = None):
        self.console = console
        self.use_json = use_json
        self.home = home if home is not None else Path.home()

    def print_dry_run_banner(self, version: str):
        self.console.print(
            f"[nit v{version}] dry-run mode: no git commands will be executed.",
            markup=False,
        )

    def print_root_heading(self, root: Path, empty: bool = False):
        self.console.print(f"[bold yellow]{escape(contract_home(root, self.home))}[/]")
        if empty:
            self.console.print(f"{GROUP_INDENT}[dim](no repositories)[/]")

    def print_result(self, result: JobResult, display_name: str | None = None, indent: str = ""):
        """Print one repository: first line beside its name, the rest aligned beneath."""
        label = format_repo_name(display_name or result.name)
        style = _result_style(result)
        first, *rest = render_result_lines(result)

        self.console.print(f"{indent}[cyan]{escape(label)}[/] {self._styled(first, style)}")
        pad = " " * (len(label) + 1)
        for line in rest:
            self.console.print(f"{indent}{pad}{self._styled(line, style)}")

    @staticmethod
    def _styled(text: str, style: str) -> str:
        if not style or not text:
            return escape(text)
        return f"[{style}]{escape(text)}[/]"

    def print_run_summary(self, summary: RunSummary):
        """Print the failure line when anything failed."""
        if not summary.success:
            self.console.print(f"[bold red]{summary.message}[/]")

    def print_results_json(
        self,
        results: Sequence[JobResult],
        roots: Sequence[Path] | None,
        summary: RunSummary,
    ):
        """Print results as JSON, grouped by root when roots are given."""
        if roots is None:
            output: dict = {"results": [r.to_dict() for r in results]}
        else:
            by_root: dict[Path | None, list[dict]] = defaultdict(list)
            for result in results:
                by_root[result.repository.root].append(result.to_dict())
            output = {
                "roots": [
                    {
                        "root": str(root),
                        "root_name": contract_home(root, self.home),
                        "results": by_root.get(root, []),
                    }
                    for root in roots
                ],
            }
        output["summary"] = summary.to_dict()
        self.console.print(
            json.dumps(output, indent=2, ensure_ascii=False),
            markup=False,
            highlight=False,
        )


class ResultPrinter:
    """Print result lines in repository order.

    In grouped mode a heading is printed for each root before its first
    repository, and roots without repositories are listed as empty. Instances
    are callable so they can be handed to the dispatcher for streaming.
    """

    def __init__(
        self,
        formatter: OutputFormatter,
        repositories: Sequence[Repository],
        roots: Sequence[Path] | None = None,
    ):
        self.formatter = formatter
        self.display_names = compute_unique_display_names(repositories)
        self.roots = list(roots) if roots is not None else None
        self._next_root = 0
        self._current_root: Path | None = None

    def __call__(self, result: JobResult) -> None:
        indent = ""
        if self.roots is not None:
            self._enter_root(result.repository.root)
            indent = GROUP_INDENT
        self.formatter.print_result(result, self.display_names.get(result.path), indent)

    def _enter_root(self, root: Path | None) -> None:
        if root is None or root == self._current_root:
            return
        while self._next_root < len(self.roots):
            candidate = self.roots[self._next_root]
            self._next_root += 1
            if candidate == root:
                break
            self.formatter.print_root_heading(candidate, empty=True)
        self.formatter.print_root_heading(root)
        self._current_root = root

    def finish(self) -> None:
        """Print the headings of trailing roots that had no repositories."""
        if self.roots is None:
            return
        while self._next_root < len(self.roots):
            self.formatter.print_root_heading(self.roots[self._next_root], empty=True)
            self._next_root += 1
