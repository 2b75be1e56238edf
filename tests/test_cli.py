"""Tests for the scriptdeck command line."""

import json
import subprocess
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from scriptdeck.cli import create_parser, main


HELLO_SCRIPT = """#!/bin/bash
# Say hello to the world
# Tags: demo
echo hello
"""

ROOT_SCRIPT = """#!/bin/bash
# Update packages
# Tags: maintenance
sudo apt-get update
"""

FAILING_SCRIPT = """#!/bin/bash
# Always fails
echo "broken" >&2
exit 4
"""


@pytest.fixture
def deck(tmp_path, monkeypatch, write_script):
    """Isolated home, scripts directory and catalog; returns a main() wrapper."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr("pathlib.Path.home", lambda: home)
    monkeypatch.chdir(tmp_path)

    scripts = tmp_path / "scripts"
    write_script("hello.sh", HELLO_SCRIPT, directory=scripts)
    write_script("update.sh", ROOT_SCRIPT, directory=scripts)
    write_script("fail.sh", FAILING_SCRIPT, directory=scripts)
    store = tmp_path / "catalog.yaml"

    def _run(*args: str) -> int:
        return main(["--scripts-dir", str(scripts), "--store", str(store), *args])

    _run.scripts = scripts
    _run.home = home
    return _run


class TestCreateParser:
    """Tests for create_parser."""

    def test_parser_has_subcommands(self):
        """All commands are registered."""
        parser = create_parser()
        commands = {
            "list": [],
            "show": ["x"],
            "scan": [],
            "run": ["x"],
            "chmod": ["x"],
            "group": ["list"],
            "doctor": [],
            "logs": ["runner"],
        }
        for command, extra in commands.items():
            assert parser.parse_args([command, *extra]).command == command

    def test_no_command_shows_help(self, capsys):
        """Without a command help is printed."""
        assert main([]) == 0
        assert "usage:" in capsys.readouterr().out


class TestCmdList:
    """Tests for the list command."""

    def test_lists_scripts(self, deck, capsys):
        """Names and descriptions are listed."""
        assert deck("list") == 0

        out = capsys.readouterr().out
        assert "hello.sh" in out
        assert "Say hello to the world" in out
        assert "update.sh" in out

    def test_filter_by_tag(self, deck, capsys):
        """--tag narrows the list."""
        deck("list", "--tag", "maintenance")

        out = capsys.readouterr().out
        assert "update.sh" in out
        assert "hello.sh" not in out

    def test_json_format(self, deck, capsys):
        """JSON output has one object per script."""
        deck("--format", "json", "list", "--search", "hello")

        lines = capsys.readouterr().out.strip().splitlines()
        data = json.loads(lines[0])
        assert len(lines) == 1
        assert data["name"] == "hello.sh"
        assert data["tags"] == ["demo"]
        assert data["executable"] is True

    def test_invalid_directory(self, tmp_path, capsys):
        """A missing scripts directory exits 2."""
        result = main(["--scripts-dir", str(tmp_path / "missing"), "list"])

        assert result == 2
        assert "Invalid directory path" in capsys.readouterr().err


class TestCmdShow:
    """Tests for the show command."""

    def test_shows_details(self, deck, capsys):
        """Details include the sudo verdict."""
        assert deck("show", "update") == 0

        out = capsys.readouterr().out
        assert "Update packages" in out
        assert "Needs sudo:  yes (sudo, package-manager)" in out

    def test_not_found(self, deck, capsys):
        """Unknown scripts exit 2."""
        assert deck("show", "nope.sh") == 2
        assert "Script not found: nope.sh" in capsys.readouterr().err


class TestCmdScan:
    """Tests for the scan command."""

    def test_summary(self, deck, capsys):
        """The summary counts elevated and plain scripts."""
        assert deck("scan") == 0

        out = capsys.readouterr().out
        assert "Total: 3, Sudo required: 1, Non-sudo: 2" in out
        assert "sudo  update.sh" in out

    def test_json(self, deck, capsys):
        """JSON output includes per-script verdicts."""
        deck("--format", "json", "scan")

        data = json.loads(capsys.readouterr().out)
        verdicts = {s["name"]: s["requires_sudo"] for s in data["scripts"]}
        assert data["elevated"] == 1
        assert verdicts == {"fail.sh": False, "hello.sh": False, "update.sh": True}


class TestCmdRun:
    """Tests for the run command."""

    def test_success(self, deck, capsys):
        """Script output is printed and exit code is 0."""
        assert deck("run", "hello.sh") == 0

        captured = capsys.readouterr()
        assert captured.out == "hello\n"
        assert "[OK] hello.sh" in captured.err

    def test_failure(self, deck, capsys):
        """A failing script exits 1 and shows its stderr."""
        assert deck("run", "fail") == 1

        err = capsys.readouterr().err
        assert "broken" in err
        assert "[FAILED] fail.sh (exit 4" in err

    def test_json(self, deck, capsys):
        """JSON output describes the result."""
        deck("--format", "json", "run", "fail.sh")

        data = json.loads(capsys.readouterr().out)
        assert data["success"] is False
        assert data["exit_code"] == 4
        assert data["error_kind"] == "exit_status"

    def test_timeout(self, deck, write_script, capsys):
        """--timeout kills slow scripts."""
        write_script("slow.sh", "#!/bin/bash\nsleep 10\n", directory=deck.scripts)

        assert deck("--format", "json", "run", "slow.sh", "--timeout", "1") == 1
        assert json.loads(capsys.readouterr().out)["error_kind"] == "timeout"

    def test_not_executable(self, deck, write_script, capsys):
        """Scripts without the execute bit are refused."""
        write_script("plain.sh", HELLO_SCRIPT, executable=False, directory=deck.scripts)

        assert deck("run", "plain.sh") == 1
        assert "Script is not executable" in capsys.readouterr().err

    def test_not_found(self, deck):
        """Unknown scripts exit 2."""
        assert deck("run", "nope") == 2

    def test_writes_runner_log(self, deck, capsys):
        """Runs are recorded in the runner log."""
        deck("run", "hello.sh")
        capsys.readouterr()

        assert deck("--format", "json", "logs", "runner") == 0

        entries = json.loads(capsys.readouterr().out)
        assert any(e["message"] == "Script finished" for e in entries)

    def test_logs_all_components(self, deck, capsys):
        """Without a component the logs of every service are shown together."""
        deck("run", "hello.sh")
        capsys.readouterr()

        assert deck("--format", "json", "logs") == 0

        components = {e["component"] for e in json.loads(capsys.readouterr().out)}
        assert {"discovery", "runner"} <= components


class TestCmdChmod:
    """Tests for the chmod command."""

    def test_makes_executable(self, deck, write_script, capsys):
        """The script gains its execute bit."""
        path = write_script("plain.sh", HELLO_SCRIPT, executable=False, directory=deck.scripts)

        assert deck("chmod", "plain.sh") == 0
        assert path.stat().st_mode & 0o100


class TestCmdGroup:
    """Tests for group commands."""

    def test_create_add_list(self, deck, capsys):
        """Groups are created, filled and listed."""
        assert deck("group", "create", "nightly", "-d", "Night jobs") == 0
        assert deck("group", "add", "nightly", "hello.sh", "fail.sh") == 0
        capsys.readouterr()

        deck("--format", "json", "group", "list")

        groups = json.loads(capsys.readouterr().out)
        assert groups[0]["name"] == "nightly"
        assert [Path(p).name for p in groups[0]["scripts"]] == ["hello.sh", "fail.sh"]

    def test_duplicate_group(self, deck, capsys):
        """Creating a group twice is a storage error."""
        deck("group", "create", "nightly")

        assert deck("group", "create", "nightly") == 1
        assert "already exists" in capsys.readouterr().err

    def test_add_unknown_script(self, deck):
        """Unknown scripts cannot be added."""
        deck("group", "create", "nightly")
        assert deck("group", "add", "nightly", "nope.sh") == 2

    def test_unknown_group(self, deck, capsys):
        """Unknown groups exit 2."""
        assert deck("group", "run", "weekly") == 2
        assert "Group not found: weekly" in capsys.readouterr().err

    def test_run_stops_on_failure(self, deck, write_script, capsys):
        """The group stops at the failing member."""
        marker = deck.scripts / "last-ran"
        write_script("last.sh", f"#!/bin/bash\ntouch {marker}\n", directory=deck.scripts)
        deck("group", "create", "nightly")
        deck("group", "add", "nightly", "hello.sh", "fail.sh", "last.sh")
        capsys.readouterr()

        assert deck("group", "run", "nightly") == 1

        err = capsys.readouterr().err
        assert "Script failed: fail.sh" in err
        assert not marker.exists()

    def test_run_success(self, deck, capsys):
        """A group of passing scripts exits 0."""
        deck("group", "create", "ok")
        deck("group", "add", "ok", "hello.sh")
        capsys.readouterr()

        assert deck("group", "run", "ok") == 0
        assert "Group execution completed" in capsys.readouterr().err

    def test_run_with_deleted_member(self, deck, capsys):
        """A member whose file is gone fails the group as not found."""
        deck("group", "create", "nightly")
        deck("group", "add", "nightly", "hello.sh")
        (deck.scripts / "hello.sh").unlink()
        capsys.readouterr()

        assert deck("--format", "json", "group", "run", "nightly") == 1

        result = json.loads(capsys.readouterr().out.splitlines()[0])
        assert result["error_kind"] == "not_found"

    def test_remove_and_delete(self, deck, capsys):
        """Members can be removed and groups deleted."""
        deck("group", "create", "nightly")
        deck("group", "add", "nightly", "hello.sh")

        assert deck("group", "remove", "nightly", "hello.sh") == 0
        assert deck("group", "remove", "nightly", "hello.sh") == 2
        assert deck("group", "delete", "nightly") == 0
        capsys.readouterr()

        deck("group", "list")
        assert "No groups." in capsys.readouterr().out

    def test_empty_group(self, deck, capsys):
        """Running an empty group is a no-op."""
        deck("group", "create", "empty")
        capsys.readouterr()

        assert deck("group", "run", "empty") == 0
        assert "contains no scripts" in capsys.readouterr().out


class TestCmdDoctor:
    """Tests for the doctor command."""

    def test_all_tools_present(self, deck, capsys):
        """Exit 0 when bash and sudo are found."""
        with patch("shutil.which", side_effect=lambda name: f"/usr/bin/{name}"):
            assert deck("doctor") == 0

        out = capsys.readouterr().out
        assert "Scripts: 3 total, 1 need sudo" in out

    def test_missing_sudo(self, deck, capsys):
        """Exit 1 when a required tool is missing."""
        with patch("shutil.which", side_effect=lambda name: None if name == "sudo" else f"/usr/bin/{name}"):
            assert deck("--format", "json", "doctor") == 1

        data = json.loads(capsys.readouterr().out)
        assert data["tools"] == {"bash": True, "sudo": False}


class TestConfig:
    """Tests for config handling in the CLI."""

    def test_bad_config(self, deck, capsys):
        """A wrongly typed config value exits 1."""
        Path(".scriptdeck.yaml").write_text("timeout: never\n")

        assert deck("list") == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_scripts_dir_from_config(self, deck, tmp_path, capsys):
        """scripts_dir can come from the project config."""
        Path(".scriptdeck.yaml").write_text(f"scripts_dir: {deck.scripts}\n")

        assert main(["--store", str(tmp_path / "c.yaml"), "list"]) == 0
        assert "hello.sh" in capsys.readouterr().out


class TestModuleEntry:
    """Tests for python -m scriptdeck."""

    def test_version(self):
        """--version prints the package version."""
        result = subprocess.run(
            [sys.executable, "-m", "scriptdeck", "--version"],
            capture_output=True,
            text=True,
            timeout=30,
        )

        assert result.returncode == 0
        assert result.stdout.startswith("scriptdeck ")
