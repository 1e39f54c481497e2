"""
Tests for the little-helper command line

Commands run through main() against the isolated profile set up in
conftest (LH_CONFIG_DIR / LH_DATA_DIR under tmp_path). No network access:
provider commands are exercised without credentials.
"""

import logging

import pytest

from little_helper.cli import HelperCLI, build_parser, main


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger = logging.getLogger("little_helper")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


@pytest.fixture
def docs(tmp_path):
    """An allowed folder with two files."""
    folder = tmp_path / "docs"
    folder.mkdir()
    (folder / "budget_2024.xlsx").write_text("numbers")
    (folder / "holiday.jpg").write_text("pixels")
    assert main(["config", "set", "allowed_dirs", str(folder)]) == 0
    return folder


class TestParser:
    """Argument parsing."""

    def test_no_command_prints_help(self, capsys):
        """Without a command, help is shown and the exit code is 0."""
        assert main([]) == 0
        assert "usage: little-helper" in capsys.readouterr().out

    def test_mode_choices(self):
        """Modes are validated by argparse."""
        args = build_parser().parse_args(["--mode", "research", "skills"])
        assert args.mode == "research"
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--mode", "party", "skills"])


class TestConfigCommand:
    """config, config get, config set."""

    def test_set_then_get(self, capsys):
        """A saved value is read back by the next invocation."""
        assert main(["config", "set", "max_results", "25"]) == 0
        capsys.readouterr()
        assert main(["config", "get", "max_results"]) == 0
        assert capsys.readouterr().out.strip() == "25"

    def test_invalid_set(self, capsys):
        """Errors go to stderr with exit code 1."""
        assert main(["config", "set", "max_results", "many"]) == 1
        assert "max_results must be an integer" in capsys.readouterr().err

    def test_unknown_get(self, capsys):
        """Unknown keys are reported."""
        assert main(["config", "get", "nothing.here"]) == 1
        assert "Unknown setting: nothing.here" in capsys.readouterr().err

    def test_status(self, capsys):
        """Without an action, the settings file and provider readiness are listed."""
        assert main(["config"]) == 0
        out = capsys.readouterr().out
        assert "(defaults)" in out
        assert "openai     no credentials" in out
        assert "local      ready" in out


class TestFileCommands:
    """scan, search, versions, restore, archive, audit."""

    def test_scan_and_search(self, docs, capsys):
        """Scanning an allowed folder makes its files searchable."""
        assert main(["scan", str(docs), "--drive", "docs"]) == 0
        assert "Indexed 2 of 2 files" in capsys.readouterr().out

        assert main(["search", "budget", "--limit", "5"]) == 0
        out = capsys.readouterr().out
        assert "Found 1 files matching 'budget':" in out
        assert "budget_2024.xlsx" in out

    def test_scan_outside_allowed(self, docs, tmp_path, capsys):
        """Folders outside allowed_dirs are refused."""
        assert main(["scan", str(tmp_path)]) == 1
        assert "outside the allowed folders" in capsys.readouterr().err

    def test_versions_and_restore(self, docs, capsys):
        """A file changed through the core can be listed and restored."""
        path = docs / "notes.txt"
        cli = HelperCLI()
        try:
            cli.file_ops.create(path, b"first")
            cli.file_ops.modify(path, b"second")
        finally:
            cli.close()

        assert main(["versions", str(path)]) == 0
        assert "Version 2 <- current" in capsys.readouterr().out

        assert main(["restore", str(path), "1"]) == 0
        assert "Restored 'notes.txt' to version 1" in capsys.readouterr().out
        assert path.read_bytes() == b"first"

    def test_versions_live_in_the_allowed_folder(self, docs, tmp_path):
        """Each allowed folder keeps its own hidden version store."""
        path = docs / "nested" / "plan.txt"
        cli = HelperCLI()
        try:
            cli.file_ops.create(path, b"draft")
        finally:
            cli.close()

        store = docs / ".little-helper" / "versions"
        assert (store / "history").is_dir()
        assert any((store / "objects").rglob("*"))
        assert not (tmp_path / "profile" / "data" / ".little-helper").exists()

    def test_archive_and_audit(self, docs, capsys):
        """Archiving moves the file and shows up in the audit view."""
        target = docs / "holiday.jpg"
        assert main(["archive", str(target)]) == 0
        assert "[archived]" in capsys.readouterr().out
        assert not target.exists()

        assert main(["audit", "--type", "file_op"]) == 0
        out = capsys.readouterr().out
        assert "[file_archive] File archived to" in out
        assert str(target) in out

    def test_empty_audit(self, capsys):
        """A fresh profile has no entries of a given type."""
        assert main(["audit", "--type", "perm_change"]) == 0
        assert "No audit entries." in capsys.readouterr().out


class TestSkillsAndAsk:
    """skills and ask."""

    def test_skills_by_mode(self, capsys):
        """Find mode lists search; research mode does not."""
        assert main(["skills"]) == 0
        assert "fuzzy_search" in capsys.readouterr().out
        assert main(["skills", "--mode", "research"]) == 0
        out = capsys.readouterr().out
        assert out.startswith("Skills in Research mode:")
        assert "fuzzy_search" not in out

    def test_global_mode_applies_to_skills(self, capsys):
        """-m before the command selects the listed mode."""
        assert main(["-m", "research", "skills"]) == 0
        assert capsys.readouterr().out.startswith("Skills in Research mode:")
        assert main(["skills"]) == 0
        assert capsys.readouterr().out.startswith("Skills in Find mode:")

    def test_ask_without_credentials(self, capsys):
        """With no usable provider, one error is printed and the exit code is 1."""
        assert main(["config", "set", "model.provider_preference", "openai"]) == 0
        capsys.readouterr()

        assert main(["ask", "hello"]) == 1
        err = capsys.readouterr().err
        assert err.count("Error:") == 1
        assert "No OpenAI authentication configured" in err
