"""Tests for the Supervisor retry state machine."""

import errno
import io
import signal

import pytest

from fakes import ScriptedOutcomes, ScriptedProcess, threads
from pyyoyo.config import SupervisorConfig
from pyyoyo.process import SpawnError
from pyyoyo.supervisor import EXIT_FAILURE, EXIT_SUCCESS, Supervisor

EXIT_0 = 0
EXIT_1 = 0x0100
EXIT_127 = 0x7F00
KILLED = signal.SIGKILL


def make_supervisor(outcomes: ScriptedOutcomes, max_retries: int = 5, verbose: int = 0, **kwargs):
    config = SupervisorConfig(
        command=["./faux-rogue", "2"],
        interval=0.01,
        max_retries=max_retries,
        verbose=verbose,
    )
    out, err = io.StringIO(), io.StringIO()
    supervisor = Supervisor(
        config,
        spawn=kwargs.pop("spawn", outcomes.spawn),
        tracker_factory=outcomes.tracker_factory,
        backend_factory=kwargs.pop("backend_factory", outcomes.backend_factory),
        out=out,
        err=err,
        **kwargs,
    )
    return supervisor, out, err


class TestSupervisor:
    """Tests for Supervisor.run against scripted lifecycles."""

    def test_success_on_first_attempt(self):
        outcomes = ScriptedOutcomes([EXIT_0])
        supervisor, out, err = make_supervisor(outcomes)

        assert supervisor.run() == EXIT_SUCCESS
        assert len(outcomes.spawned) == 1
        assert len(supervisor.attempts) == 1
        assert supervisor.attempts_remaining == 4
        assert "Child completed successfully" in out.getvalue()
        assert err.getvalue() == ""

    def test_spawns_configured_command(self):
        outcomes = ScriptedOutcomes([EXIT_0])
        supervisor, _, _ = make_supervisor(outcomes)
        supervisor.run()

        assert outcomes.spawned == [(["./faux-rogue", "2"], None)]
        assert outcomes.trackers[0].pid == 10007

    def test_success_stops_retrying_with_budget_left(self):
        outcomes = ScriptedOutcomes([EXIT_1, KILLED, EXIT_0, EXIT_1, EXIT_1])
        supervisor, out, _ = make_supervisor(outcomes, max_retries=5)

        assert supervisor.run() == EXIT_SUCCESS
        assert len(outcomes.spawned) == 3
        assert [record.pid for record in supervisor.attempts] == [10007, 10008, 10009]
        assert "Child exited with status 1" in out.getvalue()
        assert "terminated by a signal 9" in out.getvalue()

    @pytest.mark.parametrize("max_retries", [1, 2, 5])
    def test_fails_after_exactly_max_retries(self, max_retries):
        outcomes = ScriptedOutcomes([EXIT_127] * 10)
        supervisor, out, err = make_supervisor(outcomes, max_retries=max_retries)

        assert supervisor.run() == EXIT_FAILURE
        assert len(outcomes.spawned) == max_retries
        assert len(supervisor.attempts) == max_retries
        assert supervisor.attempts_remaining == 0
        assert "Retries limit reached." in err.getvalue()

    def test_exhaustion_prints_attempt_summary(self):
        outcomes = ScriptedOutcomes([EXIT_127, KILLED, None])
        supervisor, out, _ = make_supervisor(outcomes, max_retries=3)
        supervisor.run()

        text = out.getvalue()
        assert "attempt 1: child pid 10007 terminated normally exit code: 127" in text
        assert "attempt 2: child pid 10008 terminated by a signal 9" in text
        assert "attempt 3: child pid 10009 unresolved" in text

    def test_unresolved_outcome_is_retried(self):
        outcomes = ScriptedOutcomes([None, EXIT_0])
        supervisor, out, _ = make_supervisor(outcomes)

        assert supervisor.run() == EXIT_SUCCESS
        assert supervisor.attempts[0].reason is None
        assert "exit status unresolved" in out.getvalue()

    def test_spawn_failure_is_fatal(self):
        outcomes = ScriptedOutcomes([EXIT_0])

        def failing_spawn(command, output=None):
            raise SpawnError(errno.EAGAIN, "could not start './faux-rogue': Resource temporarily unavailable")

        supervisor, _, err = make_supervisor(outcomes, spawn=failing_spawn)

        assert supervisor.run() == EXIT_FAILURE
        assert supervisor.attempts == []
        assert "could not start" in err.getvalue()

    def test_unexecutable_command_uses_up_attempts(self):
        """A missing program is a failed lifecycle, retried like any other."""
        outcomes = ScriptedOutcomes([EXIT_0])

        def missing_program(command, output=None):
            raise SpawnError(errno.ENOENT, "could not start './faux-rogue': No such file or directory")

        supervisor, out, err = make_supervisor(outcomes, max_retries=3, spawn=missing_program)

        assert supervisor.run() == EXIT_FAILURE
        assert len(supervisor.attempts) == 3
        assert [record.reason.exit_code for record in supervisor.attempts] == [127, 127, 127]
        assert out.getvalue().count("Child exited with status 127") == 3
        assert err.getvalue().count("could not start") == 3
        assert "Retries limit reached." in err.getvalue()

    def test_unexecutable_then_fixed_command_succeeds(self):
        outcomes = ScriptedOutcomes([EXIT_0])
        calls = []

        def flaky_spawn(command, output=None):
            calls.append(command)
            if len(calls) == 1:
                raise SpawnError(errno.EACCES, "could not start './faux-rogue': Permission denied")
            return outcomes.spawn(command, output)

        supervisor, _, _ = make_supervisor(outcomes, spawn=flaky_spawn)

        assert supervisor.run() == EXIT_SUCCESS
        assert len(supervisor.attempts) == 2
        assert not supervisor.attempts[0].succeeded

    def test_quiet_suppresses_output(self):
        outcomes = ScriptedOutcomes([EXIT_1, EXIT_1])
        supervisor, out, err = make_supervisor(outcomes, max_retries=2, verbose=-1)

        assert supervisor.run() == EXIT_FAILURE
        assert out.getvalue() == ""
        assert err.getvalue() == ""

    def test_verbose_echoes_command_and_pid(self):
        outcomes = ScriptedOutcomes([EXIT_0])
        supervisor, out, _ = make_supervisor(outcomes, verbose=1)
        supervisor.run()

        text = out.getvalue()
        assert "./faux-rogue 2" in text
        assert "child_pid: 10007" in text

    def test_attempt_records_monitor_counters(self):
        outcomes = ScriptedOutcomes([KILLED, EXIT_0])
        idle = threads((1, "S", 5, 5))
        backends = [ScriptedProcess([idle], exit_on_kill=True), ScriptedProcess([[]], alive=False)]
        records = []
        supervisor, _, _ = make_supervisor(
            outcomes,
            backend_factory=lambda pid, tracker: backends.pop(0),
            on_attempt=records.append,
        )

        assert supervisor.run() == EXIT_SUCCESS
        first = supervisor.attempts[0]
        assert first.hangs == 6
        assert first.signals_sent == 6
        assert records == supervisor.attempts

    def test_on_tick_receives_monitor_ticks(self):
        outcomes = ScriptedOutcomes([EXIT_0])
        ticks = []
        supervisor, _, _ = make_supervisor(
            outcomes,
            backend_factory=lambda pid, tracker: ScriptedProcess([threads((1, "R", 0, 0))], exit_after_samples=2),
            on_tick=ticks.append,
        )
        supervisor.run()

        assert len(ticks) == 2
        assert not any(tick.hung for tick in ticks)

    def test_stop_before_run_spawns_nothing(self):
        outcomes = ScriptedOutcomes([EXIT_0])
        supervisor, _, err = make_supervisor(outcomes)
        supervisor.stop()

        assert supervisor.run() == EXIT_FAILURE
        assert outcomes.spawned == []
        assert "Supervision stopped." in err.getvalue()

    def test_stop_during_run_prevents_retry(self):
        outcomes = ScriptedOutcomes([EXIT_1, EXIT_0])
        supervisor = None

        def stop_after_first(record):
            supervisor.stop()

        supervisor, _, _ = make_supervisor(outcomes, on_attempt=stop_after_first)

        assert supervisor.run() == EXIT_FAILURE
        assert len(outcomes.spawned) == 1

    def test_stop_while_spawning_terminates_new_child(self):
        """Test a stop that lands before the child is being monitored."""
        outcomes = ScriptedOutcomes([signal.SIGTERM])
        process = ScriptedProcess([threads((1, "R", 0, 0))], exit_after_terms=1)
        supervisor = None

        def spawn_then_stop(command, output=None):
            pid = outcomes.spawn(command, output)
            supervisor.stop(grace=0)
            return pid

        supervisor, _, err = make_supervisor(
            outcomes,
            spawn=spawn_then_stop,
            backend_factory=lambda pid, tracker: process,
        )

        assert supervisor.run() == EXIT_FAILURE
        assert process.signals == [signal.SIGTERM]
        assert len(outcomes.spawned) == 1
        assert "Supervision stopped." in err.getvalue()

    def test_stop_terminates_running_child(self):
        outcomes = ScriptedOutcomes([signal.SIGTERM])
        process = ScriptedProcess([threads((1, "R", 0, 0))], exit_after_terms=1)
        supervisor = None

        def stop_on_first_tick(tick):
            supervisor.stop(grace=0)

        supervisor, _, _ = make_supervisor(
            outcomes,
            backend_factory=lambda pid, tracker: process,
            on_tick=stop_on_first_tick,
        )

        assert supervisor.run() == EXIT_FAILURE
        assert process.signals == [signal.SIGTERM]
        assert len(outcomes.spawned) == 1
