"""MCP-compatible tool schema for AI agents."""

from __future__ import annotations

from ._version import __version__

_RESULT_SCHEMA = {
    "type": "object",
    "properties": {
        "path": {"type": "string"},
        "name": {"type": "string"},
        "root": {"type": ["string", "null"]},
        "command": {"type": "string"},
        "args": {"type": "array", "items": {"type": "string"}},
        "kind": {"type": "string", "enum": ["optimized", "passthrough"]},
        "success": {"type": "boolean"},
        "returncode": {"type": "integer"},
        "stdout": {"type": "string"},
        "stderr": {"type": "string"},
        "error": {"type": "string"},
        "dry_run": {"type": "boolean"},
        "summary": {
            "type": ["object", "null"],
            "properties": {
                "branch": {"type": "string"},
                "upstream": {"type": "string"},
                "ahead": {"type": "integer"},
                "behind": {"type": "integer"},
                "modified_count": {"type": "integer"},
                "untracked_count": {"type": "integer"},
                "clean": {"type": "boolean"},
            },
        },
        "raw_status": {"type": ["string", "null"]},
    },
}

_SUMMARY_SCHEMA = {
    "type": "object",
    "properties": {
        "total": {"type": "integer"},
        "failed": {"type": "integer"},
        "succeeded": {"type": "integer"},
        "success": {"type": "boolean"},
    },
}


def get_tool_schema() -> dict:
    """Generate MCP-compatible tool schema for AI agents."""
    return {
        "name": "nit",
        "version": __version__,
        "description": "Run one git command across many Git repositories in parallel and report one condensed line per repository. Invoked as 'nit' it works on repositories below the current directory; invoked as 'nitr' or with --roots it works on every configured root, grouped by root.",
        "usage": "nit [options] <git-command> [args...]",
        "tools": [
            {
                "name": "run",
                "description": "Run a git subcommand in every discovered repository. pull, fetch and status are rendered as a condensed status (branch, ahead/behind, modified and untracked counts); any other subcommand shows git's own output. Exit code is non-zero when any repository failed.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "command": {
                            "type": "string",
                            "description": "git subcommand, e.g. pull, fetch, status, log",
                        },
                        "args": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Arguments passed to the git subcommand unchanged",
                            "default": [],
                        },
                        "depth": {
                            "type": "string",
                            "description": 'Directory levels searched below each root: a positive integer or "all"',
                            "default": "1",
                        },
                        "workers": {
                            "type": "integer",
                            "description": "Maximum concurrent git processes (default: CPU count, 0 = unlimited)",
                            "minimum": 0,
                        },
                        "dry_run": {
                            "type": "boolean",
                            "description": "Print the commands that would run without executing them",
                            "default": False,
                        },
                        "ssh": {
                            "type": "boolean",
                            "description": "Force SSH remote URLs",
                            "default": False,
                        },
                        "https": {
                            "type": "boolean",
                            "description": "Force HTTPS remote URLs",
                            "default": False,
                        },
                        "timeout": {
                            "type": "number",
                            "description": "Seconds before a git process is killed and reported as failed",
                        },
                        "roots": {
                            "type": "string",
                            "description": "Path to roots file (forces roots mode). Auto-resolved in roots mode from: $NIT_ROOTS env var → ~/.config/nit/roots → ~/.nit-roots",
                        },
                        "json": {
                            "type": "boolean",
                            "description": "Output as JSON for machine parsing",
                            "default": False,
                        },
                    },
                    "required": ["command"],
                },
                "outputSchema": {
                    "type": "object",
                    "properties": {
                        "results": {"type": "array", "items": _RESULT_SCHEMA},
                        "roots": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "root": {"type": "string"},
                                    "root_name": {"type": "string"},
                                    "results": {"type": "array", "items": _RESULT_SCHEMA},
                                },
                            },
                        },
                        "summary": _SUMMARY_SCHEMA,
                    },
                },
                "examples": [
                    {
                        "description": "Pull every repository below the current directory",
                        "command": "nit pull",
                    },
                    {
                        "description": "Condensed status across all configured roots as JSON",
                        "command": "nitr --json status",
                    },
                    {
                        "description": "Preview a fetch two levels deep without running git",
                        "command": "nit --dry-run --depth 2 fetch --prune",
                    },
                ],
            },
            {
                "name": "roots",
                "description": "Manage the configured roots used by roots mode.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "action": {"type": "string", "enum": ["add", "rm", "list"]},
                        "path": {
                            "type": "string",
                            "description": "Root directory (required for add and rm)",
                        },
                    },
                    "required": ["action"],
                },
                "examples": [
                    {"description": "Add a root", "command": "nit roots add ~/src"},
                    {"description": "Show configured roots", "command": "nit roots list"},
                ],
            },
        ],
    }
