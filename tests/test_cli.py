"""Tests for argument parsing and exit codes."""

import logging
import tempfile

import pytest
from conftest import make_file

from tempclear import cli
from tempclear.autodetect import logical_cpu_count
from tempclear.logging import CONSOLE_HANDLER_NAMES, BackgroundFileHandler


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "TEMPCLEAR_DAYS",
        "TEMPCLEAR_PATH",
        "TEMPCLEAR_PARALLEL",
        "TEMPCLEAR_THROTTLE",
        "TEMPCLEAR_LOG_FILE",
        "TEMPCLEAR_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    args = cli.parse_args([])

    assert args.run is False
    assert args.delete_all is False
    assert args.days == 7
    assert args.path == tempfile.gettempdir()
    assert args.parallel is None
    assert args.auto_detect is True
    assert args.throttle == 0
    assert args.log is None
    assert args.verbose is False
    assert args.log_format == "text"


def test_short_flags():
    args = cli.parse_args(["-r", "-a", "-d", "30", "-p", "/data/tmp", "-P", "4", "-t", "2048", "-l", "x.log", "-v"])

    assert args.run is True
    assert args.delete_all is True
    assert args.days == 30
    assert args.path == "/data/tmp"
    assert args.parallel == 4
    assert args.throttle == 2048
    assert args.log == "x.log"
    assert args.verbose is True


def test_bare_parallel_flag_uses_cpu_count():
    args = cli.parse_args(["--parallel"])
    assert args.parallel == logical_cpu_count()


def test_no_auto_detect():
    assert cli.parse_args(["--no-auto-detect"]).auto_detect is False


def test_env_defaults(monkeypatch):
    monkeypatch.setenv("TEMPCLEAR_DAYS", "3")
    monkeypatch.setenv("TEMPCLEAR_PARALLEL", "2")
    monkeypatch.setenv("TEMPCLEAR_LOG_FORMAT", "json")

    args = cli.parse_args([])

    assert args.days == 3
    assert args.parallel == 2
    assert args.log_format == "json"


@pytest.mark.parametrize("argv", [["-d", "-1"], ["-P", "0"], ["-t", "-10"], ["-d", "many"]])
def test_invalid_values_rejected(argv):
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(argv)
    assert exc_info.value.code == 2


def test_help_exits_zero(capsys):
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["-h"])
    assert exc_info.value.code == 0
    assert "--delete-all" in capsys.readouterr().out


def test_dry_run_by_default(temp_dir, capsys):
    stale = make_file(temp_dir / "old.txt", age_days=30)

    code = cli.run(["-p", str(temp_dir), "--no-auto-detect"])

    assert code == cli.EXIT_OK
    assert stale.exists()
    out = capsys.readouterr().out
    assert "[INFO] Mode: dry run" in out
    assert f"[DRY] Would delete file: {stale}" in out
    assert "[INFO] Done" in out


def test_run_deletes(temp_dir, capsys):
    stale = make_file(temp_dir / "old.txt", age_days=30)
    fresh = make_file(temp_dir / "new.txt", age_days=0)

    code = cli.run(["-r", "-p", str(temp_dir), "-d", "7", "-P", "2"])

    assert code == cli.EXIT_OK
    assert not stale.exists()
    assert fresh.exists()


def test_delete_all_run(temp_dir):
    make_file(temp_dir / "new.txt", age_days=0)
    make_file(temp_dir / "sub" / "inner.txt", age_days=0)

    code = cli.run(["--run", "--delete-all", "--path", str(temp_dir), "--no-auto-detect"])

    assert code == cli.EXIT_OK
    assert list(temp_dir.iterdir()) == []


def test_missing_path_exits_two(temp_dir, capsys):
    code = cli.run(["-p", str(temp_dir / "missing"), "--no-auto-detect"])

    assert code == cli.EXIT_UNEXPECTED
    assert "Root path does not exist" in capsys.readouterr().err


def test_log_file_mirror(temp_dir, tmp_path):
    log_file = tmp_path / "tempclear.log"
    make_file(temp_dir / "old.txt", age_days=30)

    code = cli.run(["-p", str(temp_dir), "--no-auto-detect", "-l", str(log_file)])

    assert code == cli.EXIT_OK
    content = log_file.read_text(encoding="utf-8")
    assert "] [DRY] Would delete file:" in content
    assert "] [INFO] Done" in content


def test_main_exits_with_run_code(monkeypatch):
    monkeypatch.setattr(cli, "run", lambda: 2)

    with pytest.raises(SystemExit) as exc_info:
        cli.main()
    assert exc_info.value.code == 2


def test_unopenable_log_file_exits_two_without_handlers(temp_dir, tmp_path, capsys):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")

    code = cli.run(["-p", str(temp_dir), "--no-auto-detect", "-l", str(blocker / "tempclear.log")])

    assert code == cli.EXIT_UNEXPECTED
    assert "Cannot open log file" in capsys.readouterr().err
    installed = logging.getLogger("tempclear").handlers
    assert not [h for h in installed if h.get_name() in CONSOLE_HANDLER_NAMES or isinstance(h, BackgroundFileHandler)]


def test_missing_path_exits_two_after_earlier_run(temp_dir, capsys):
    make_file(temp_dir / "old.txt", age_days=30)
    assert cli.run(["-p", str(temp_dir), "--no-auto-detect"]) == cli.EXIT_OK
    capsys.readouterr()

    code = cli.run(["-p", str(temp_dir / "missing"), "--no-auto-detect"])

    assert code == cli.EXIT_UNEXPECTED
    assert "Root path does not exist" in capsys.readouterr().err
