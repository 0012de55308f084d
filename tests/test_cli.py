"""End-to-end tests of the command line through typer's CliRunner."""

from __future__ import annotations

import json
import sys

import pytest
from typer.testing import CliRunner

from nit import __version__
from nit.core import app

runner = CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    return home_dir


@pytest.fixture
def as_nit(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["nit"])


@pytest.fixture
def as_nitr(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["/usr/local/bin/nitr"])


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert result.stdout.strip() == f"nit {__version__}"


def test_schema_is_json():
    result = runner.invoke(app, ["--schema"])

    assert result.exit_code == 0
    schema = json.loads(result.stdout)
    assert schema["name"] == "nit"
    assert [tool["name"] for tool in schema["tools"]] == ["run", "roots"]


@pytest.mark.usefixtures("as_nit")
def test_dry_run_in_current_directory(tmp_path, make_repo, monkeypatch):
    for name in ("beta", "alpha"):
        make_repo(tmp_path / name)
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["--dry-run", "fetch", "--all"])

    assert result.exit_code == 0
    assert result.stdout.splitlines() == [
        f"[nit v{__version__}] dry-run mode: no git commands will be executed.",
        f"[alpha                   ] would execute: git -C {tmp_path / 'alpha'} fetch --all",
        f"[beta                    ] would execute: git -C {tmp_path / 'beta'} fetch --all",
    ]


@pytest.mark.usefixtures("as_nit")
def test_dry_run_with_forced_ssh(tmp_path, make_repo, monkeypatch):
    make_repo(tmp_path / "only")
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["--dry-run", "--ssh", "pull"])

    assert result.exit_code == 0
    assert "-c url.git@github.com:.insteadOf=https://github.com/ -C" in result.stdout


@pytest.mark.usefixtures("as_nit")
def test_optimized_command_scenario(scenario_workspace, fake_git, monkeypatch):
    monkeypatch.setenv("NIT_GIT", str(fake_git))
    monkeypatch.chdir(scenario_workspace)

    result = runner.invoke(app, ["-n", "2", "fetch"])

    assert result.exit_code == 1
    assert result.stdout.splitlines() == [
        "[repo-a                  ] ✓",
        "[repo-b                  ] feature ↓2 ↑1",
        "[repo-c                  ] ✗ fatal: unable to access 'https://example.com/repo-c.git/': "
        "Could not resolve host: example.com",
        "1 of 3 repositories failed.",
    ]


@pytest.mark.usefixtures("as_nit")
def test_passthrough_command_shows_git_output(scenario_workspace, fake_git, monkeypatch):
    monkeypatch.setenv("NIT_GIT", str(fake_git))
    monkeypatch.chdir(scenario_workspace)

    result = runner.invoke(app, ["-n", "0", "log", "--oneline", "-n", "1"])

    assert result.exit_code == 1
    lines = result.stdout.splitlines()
    assert lines[0] == "[repo-a                  ] repo-a: git log --oneline -n 1"
    assert lines[1] == "[repo-b                  ] repo-b: git log --oneline -n 1"
    assert lines[2].startswith("[repo-c                  ] ✗ fatal:")
    assert lines[3] == "1 of 3 repositories failed."


@pytest.mark.usefixtures("as_nit")
def test_all_successful_exits_zero(tmp_path, make_repo, fake_git, monkeypatch):
    make_repo(tmp_path / "repo-a")
    make_repo(tmp_path / "repo-b")
    monkeypatch.setenv("NIT_GIT", str(fake_git))
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "failed" not in result.stdout


@pytest.mark.usefixtures("as_nit")
def test_no_repositories(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "No git repositories found" in result.stdout


@pytest.mark.usefixtures("as_nit")
def test_json_output(tmp_path, make_repo, monkeypatch):
    make_repo(tmp_path / "one")
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["--json", "--dry-run", "status"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["results"][0]["name"] == "one"
    assert data["results"][0]["dry_run"] is True
    assert data["summary"]["total"] == 1


@pytest.mark.usefixtures("as_nit")
def test_roots_file_groups_output(tmp_path, home, make_repo, monkeypatch):
    make_repo(home / "src" / "project-b")
    make_repo(home / "src" / "project-a")
    make_repo(home / "work" / "client-app")
    roots_file = tmp_path / "roots"
    roots_file.write_text("# my roots\n$HOME/work\n~/src\n\n")
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["--roots", str(roots_file), "--dry-run", "status"])

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines[1] == "~/src"
    assert lines[2].startswith("  [project-a               ] would execute: ")
    assert lines[3].startswith("  [project-b               ] would execute: ")
    assert lines[4] == "~/work"
    assert lines[5].startswith("  [client-app              ] would execute: ")
    assert len(lines) == 6


@pytest.mark.usefixtures("as_nitr", "home")
def test_nitr_uses_roots_from_environment(tmp_path, make_repo, monkeypatch):
    make_repo(tmp_path / "code" / "lib")
    roots_file = tmp_path / "my-roots"
    roots_file.write_text(f"{tmp_path / 'code'}\n")
    monkeypatch.setenv("NIT_ROOTS", str(roots_file))

    result = runner.invoke(app, ["--dry-run", "pull"])

    assert result.exit_code == 0
    assert str(tmp_path / "code") in result.stdout
    assert "  [lib" in result.stdout


@pytest.mark.usefixtures("as_nitr", "home")
def test_nitr_without_roots_file_fails():
    result = runner.invoke(app, ["status"])

    assert result.exit_code == 2
    assert "No roots file found" in result.stdout


@pytest.mark.usefixtures("as_nit")
def test_invalid_depth_is_a_usage_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["--depth", "0", "status"])

    assert result.exit_code == 2
    assert "scan depth" in result.stdout


@pytest.mark.usefixtures("as_nit")
def test_depth_all_reaches_nested_repositories(tmp_path, make_repo, monkeypatch):
    make_repo(tmp_path / "group" / "team" / "service")
    monkeypatch.chdir(tmp_path)

    shallow = runner.invoke(app, ["--dry-run", "status"])
    deep = runner.invoke(app, ["--dry-run", "--depth", "all", "status"])

    assert "No git repositories found" in shallow.stdout
    assert "[service" in deep.stdout


@pytest.mark.usefixtures("as_nit")
def test_ssh_and_https_are_exclusive(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["--ssh", "--https", "fetch"])

    assert result.exit_code == 2
    assert "mutually exclusive" in result.stdout


@pytest.mark.usefixtures("as_nit")
def test_negative_workers_rejected(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["-n", "-3", "fetch"])

    assert result.exit_code == 2


@pytest.mark.usefixtures("home")
def test_roots_add_list_rm(tmp_path, monkeypatch):
    roots_file = tmp_path / "config" / "roots"
    monkeypatch.setenv("NIT_ROOTS", str(roots_file))
    project_dir = tmp_path / "projects"
    project_dir.mkdir()

    added = runner.invoke(app, ["roots", "add", str(project_dir)])
    again = runner.invoke(app, ["roots", "add", str(project_dir)])
    listed = runner.invoke(app, ["roots", "list"])

    assert added.exit_code == 0
    assert "Added" in added.stdout
    assert again.exit_code == 0
    assert "already" in again.stdout
    assert roots_file.read_text() == f"{project_dir.resolve()}\n"
    assert listed.stdout.strip() == str(project_dir.resolve())

    removed = runner.invoke(app, ["roots", "rm", str(project_dir)])
    missing = runner.invoke(app, ["roots", "rm", str(project_dir)])

    assert removed.exit_code == 0
    assert roots_file.read_text() == ""
    assert missing.exit_code == 1


@pytest.mark.usefixtures("home")
def test_roots_add_rejects_missing_directory(tmp_path, monkeypatch):
    monkeypatch.setenv("NIT_ROOTS", str(tmp_path / "roots"))

    result = runner.invoke(app, ["roots", "add", str(tmp_path / "nope")])

    assert result.exit_code == 2
    assert "Not a directory" in result.stdout


@pytest.mark.usefixtures("home")
def test_roots_usage_error():
    result = runner.invoke(app, ["roots", "frobnicate"])

    assert result.exit_code == 2
    assert "usage" in result.stdout
