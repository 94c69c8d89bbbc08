"""Tests for the pyyoyo command line."""

import sys

import pytest

from pyyoyo import cli
from pyyoyo.cli import EXIT_INTERRUPTED, build_parser, main


class TestParser:
    """Tests for build_parser."""

    def test_child_flags_are_left_alone(self):
        args = build_parser().parse_args(["-w", "0.5", "-r", "3", "qemu", "-m", "512", "-v"])

        assert args.wait_interval == 0.5
        assert args.max_retries == 3
        assert args.max_hangs is None
        assert args.verbose == 0
        assert args.command == ["qemu", "-m", "512", "-v"]

    def test_verbose_is_counted(self):
        args = build_parser().parse_args(["-vv", "true"])

        assert args.verbose == 2
        assert not args.quiet

    def test_long_options(self):
        args = build_parser().parse_args(
            [
                "--max-hangs",
                "2",
                "--hang-tolerance",
                "4",
                "--fakeroot",
                "/tmp/fake",
                "--child-log",
                "out.log",
                "--tui",
                "true",
            ]
        )

        assert args.max_hangs == 2
        assert args.hang_tolerance == 4
        assert args.fakeroot == "/tmp/fake"
        assert args.child_log == "out.log"
        assert args.tui


class TestMain:
    """Tests for main()."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1

        assert "usage: pyyoyo" in capsys.readouterr().out

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["-V"])

        assert excinfo.value.code == 0
        assert "pyyoyo version 0.1.0" in capsys.readouterr().out

    def test_negative_tolerance_is_a_usage_error(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["-t", "-1", "true"])

        assert excinfo.value.code == 2
        assert "hang_tolerance" in capsys.readouterr().err

    def test_runs_child_to_success(self, capsys):
        status = main(["-w", "0.2", sys.executable, "-c", "pass"])

        assert status == 0
        assert "Child completed successfully" in capsys.readouterr().out

    def test_failing_child_exhausts_retries(self, capsys):
        status = main(["-w", "0.2", "-r", "2", sys.executable, "-c", "raise SystemExit(127)"])

        captured = capsys.readouterr()
        assert status == 1
        assert captured.out.count("Child exited with status 127") == 2
        assert "Retries limit reached." in captured.err

    def test_quiet_run_prints_nothing(self, capsys):
        status = main(["-q", "-w", "0.2", "-r", "1", sys.executable, "-c", "raise SystemExit(3)"])

        captured = capsys.readouterr()
        assert status == 1
        assert captured.out == ""
        assert captured.err == ""

    def test_verbose_run_echoes_settings(self, capsys):
        main(["-v", "-w", "0.2", sys.executable, "-c", "pass"])

        out = capsys.readouterr().out
        assert "verbosity: 1" in out
        assert "child_pid: " in out

    def test_missing_program_is_retried_until_budget_is_spent(self, capsys):
        status = main(["-r", "3", "/nonexistent/faux-rogue"])

        captured = capsys.readouterr()
        assert status == 1
        assert captured.out.count("Child exited with status 127") == 3
        assert "attempt 3: child pid 0 terminated normally exit code: 127" in captured.out
        assert "Retries limit reached." in captured.err

    def test_interrupt_returns_130(self, monkeypatch):
        stopped = []

        def interrupted_run(self):
            raise KeyboardInterrupt

        monkeypatch.setattr(cli.Supervisor, "run", interrupted_run)
        monkeypatch.setattr(cli.Supervisor, "stop", lambda self, grace=5.0: stopped.append(grace))

        assert main(["true"]) == EXIT_INTERRUPTED
        assert stopped == [5.0]

    def test_tui_defaults_child_log(self, monkeypatch):
        import pyyoyo.app

        seen = []

        def fake_run(self):
            seen.append(self._supervisor_config)

        monkeypatch.setattr(pyyoyo.app.SupervisorApp, "run", fake_run)

        assert main(["--tui", "true"]) == 1
        assert seen[0].child_log == "/dev/null"
