"""nit: run one git command across many repositories in parallel."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .core import (
    CommandKind,
    ConfigError,
    DiscoveryAccessError,
    Dispatcher,
    DryRunInvoker,
    FleetManager,
    GitInvoker,
    Invocation,
    Job,
    JobResult,
    MultiRootFleetManager,
    NitError,
    ProcessRegistry,
    Repository,
    ResultCollector,
    RunConfig,
    RunMode,
    RunSummary,
    ScanDepth,
    StatusParseError,
    StatusSummary,
    UrlScheme,
    app,
    classify_command,
    discover_repositories,
    execute_job,
    find_repositories,
    load_roots_file,
    parse_status,
)
from .formatters import OutputFormatter, ResultPrinter, render_status_summary
from .schema import get_tool_schema

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "CommandKind",
    "Invocation",
    "Job",
    "JobResult",
    "Repository",
    "RunConfig",
    "RunMode",
    "RunSummary",
    "ScanDepth",
    "StatusSummary",
    "UrlScheme",
    # Errors
    "ConfigError",
    "DiscoveryAccessError",
    "NitError",
    "StatusParseError",
    # Operations
    "Dispatcher",
    "DryRunInvoker",
    "FleetManager",
    "GitInvoker",
    "MultiRootFleetManager",
    "ProcessRegistry",
    "ResultCollector",
    # Functions
    "classify_command",
    "discover_repositories",
    "execute_job",
    "find_repositories",
    "get_tool_schema",
    "load_roots_file",
    "parse_status",
    "render_status_summary",
    # Formatters
    "OutputFormatter",
    "ResultPrinter",
]
