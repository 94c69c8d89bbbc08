"""pyyoyo - live Textual dashboard for a supervised command."""

import os
import threading
from enum import Enum
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import DataTable, Footer, Log, Static

from pyyoyo.config import SupervisorConfig
from pyyoyo.log import configure_logging
from pyyoyo.models import AttemptRecord, ThreadState
from pyyoyo.monitor import MonitorTick
from pyyoyo.process import signal_name
from pyyoyo.supervisor import EXIT_FAILURE, Supervisor

CLOCK_TICKS = os.sysconf("SC_CLK_TCK")

SupervisorEvent = MonitorTick | AttemptRecord | str


class SortKey(Enum):
    """Sort keys for the thread table."""

    TID = "tid"
    STATE = "state"
    UTIME = "utime"
    STIME = "stime"


def format_ticks(ticks: int, hz: int = CLOCK_TICKS) -> str:
    """Format clock ticks as minutes:seconds.hundredths."""
    seconds = ticks / hz
    minutes = int(seconds // 60)
    return f"{minutes}:{seconds - minutes * 60:05.2f}"


class QueueWriter:
    """File-like sink that forwards complete lines to the event queue."""

    def __init__(self, queue: "Queue[SupervisorEvent]", prefix: str = "") -> None:
        """Initialize QueueWriter."""
        self._queue = queue
        self._prefix = prefix
        self._buffer = ""

    def write(self, text: str) -> int:
        """Buffer text and queue each completed line."""
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._queue.put(self._prefix + line)
        return len(text)

    def flush(self) -> None:
        pass


class SupervisorRunner:
    """
    Runs a Supervisor in a daemon thread.

    Monitor ticks, attempt records and output lines are pushed to a
    thread-safe Queue for the UI to drain.
    """

    def __init__(self, config: SupervisorConfig, update_queue: "Queue[SupervisorEvent]") -> None:
        """Initialize the SupervisorRunner."""
        self._queue = update_queue
        writer = QueueWriter(update_queue)
        self._supervisor = Supervisor(
            config,
            out=writer,
            err=QueueWriter(update_queue, prefix="! "),
            on_tick=update_queue.put,
            on_attempt=update_queue.put,
        )
        self._thread: threading.Thread | None = None
        self.exit_status: int | None = None

    @property
    def supervisor(self) -> Supervisor:
        """The wrapped Supervisor."""
        return self._supervisor

    @property
    def is_running(self) -> bool:
        """Check if the supervisor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the supervisor thread."""
        if self._thread is not None:
            return

        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="SupervisorRunner",
        )
        self._thread.start()

    def stop(self, grace: float = 2.0, timeout: float | None = 5.0) -> None:
        """
        Stop supervising: no new attempts, running child terminated.

        Args:
            grace: Seconds between SIGTERM and SIGKILL for the child.
            timeout: How long to wait for the thread to finish (seconds).
        """
        self._supervisor.stop(grace=grace)
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        """Thread body: supervise and keep the exit status."""
        self.exit_status = self._supervisor.run()


class StatusHeader(Static):
    """Header widget showing the command and supervision progress."""

    DEFAULT_CSS = """
    StatusHeader {
        height: auto;
        min-height: 4;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, config: SupervisorConfig, *args, **kwargs) -> None:
        """Initialize StatusHeader."""
        super().__init__(*args, **kwargs)
        self._supervisor_config = config
        self._attempt = 0
        self._pid: int | None = None
        self._hang_count = 0
        self._verdict = "waiting for first check"
        self._finished: int | None = None

    def on_mount(self) -> None:
        """Show the initial status when mounted."""
        self._refresh_display()

    def update_tick(self, tick: MonitorTick) -> None:
        """Update the header from a monitor tick."""
        if tick.pid != self._pid:
            self._pid = tick.pid
            self._attempt += 1
        self._hang_count = tick.hang_count
        if tick.hung:
            sent = signal_name(tick.signal_sent) if tick.signal_sent else "no signal"
            self._verdict = f"[red]looks hung[/red] ({sent})"
        else:
            self._verdict = "[green]making progress[/green]"
        self._refresh_display()

    def mark_finished(self, exit_status: int) -> None:
        """Show the final exit status."""
        self._finished = exit_status
        self._refresh_display()

    def _refresh_display(self) -> None:
        """Refresh the display with current data."""
        self.update(self.render_status())

    def render_status(self) -> str:
        """Get the status text."""
        config = self._supervisor_config
        state = (
            f"finished, exit status {self._finished}"
            if self._finished is not None
            else f"attempt {max(self._attempt, 1)}/{config.max_retries}"
        )
        pid = self._pid if self._pid is not None else "-"
        return (
            f"Command: {' '.join(config.command)}\n"
            f"Status: {state}   pid: {pid}\n"
            f"Hangs: {self._hang_count}/{config.max_hangs}   "
            f"interval: {config.interval:g}s   verdict: {self._verdict}"
        )


class ThreadTable(Container):
    """Container for the per-thread state table."""

    DEFAULT_CSS = """
    ThreadTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ThreadTable."""
        super().__init__(*args, **kwargs)
        self._current_tids: set[int] = set()
        self._last_threads: list[ThreadState] = []
        self._sort_key: SortKey = SortKey.TID
        self._sort_reverse: bool = False

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        # Busiest threads first when sorting by CPU time
        self._sort_reverse = self._sort_key in (SortKey.UTIME, SortKey.STIME)
        self._rebuild()
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the thread table."""
        yield DataTable(id="thread-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#thread-table", DataTable)
        table.cursor_type = "row"
        table.add_column("TID", key="tid", width=8)
        table.add_column("S", key="state", width=3)
        table.add_column("UTIME", key="utime", width=12)
        table.add_column("STIME", key="stime", width=12)

    def update_threads(self, threads: list[ThreadState]) -> None:
        """
        Update the thread table with a new snapshot.

        Known threads are updated in place with update_cell to avoid
        re-rendering the whole table. Rows of exited threads are removed.
        """
        table = self.query_one("#thread-table", DataTable)
        sorted_threads = self._sort_threads(threads)
        new_tids = {thread.tid for thread in sorted_threads}

        for tid in self._current_tids - new_tids:
            table.remove_row(str(tid))

        for thread in sorted_threads:
            if thread.tid in self._current_tids:
                self._update_row(table, thread)
            else:
                self._add_row(table, thread)

        self._current_tids = new_tids
        self._last_threads = list(threads)

    def _rebuild(self) -> None:
        """Re-add every row so the table follows the current sort key."""
        if not self.is_mounted:
            return
        self.query_one("#thread-table", DataTable).clear()
        self._current_tids = set()
        self.update_threads(self._last_threads)

    def _update_row(self, table: DataTable, thread: ThreadState) -> None:
        """Update an existing row using update_cell."""
        row_key = str(thread.tid)
        table.update_cell(row_key, "state", thread.state)
        table.update_cell(row_key, "utime", format_ticks(thread.utime))
        table.update_cell(row_key, "stime", format_ticks(thread.stime))

    def _add_row(self, table: DataTable, thread: ThreadState) -> None:
        """Add a new row to the table."""
        table.add_row(
            str(thread.tid),
            thread.state,
            format_ticks(thread.utime),
            format_ticks(thread.stime),
            key=str(thread.tid),
        )

    def _sort_threads(self, threads: list[ThreadState]) -> list[ThreadState]:
        """Sort threads based on the current sort key."""
        key_func = {
            SortKey.TID: lambda t: t.tid,
            SortKey.STATE: lambda t: t.state,
            SortKey.UTIME: lambda t: t.utime,
            SortKey.STIME: lambda t: t.stime,
        }
        # Duplicate tids (zeroed entries from read errors) keep one row
        unique = {thread.tid: thread for thread in threads}
        return sorted(unique.values(), key=key_func[self._sort_key], reverse=self._sort_reverse)


class AttemptTable(Container):
    """Finished attempts, one row each."""

    DEFAULT_CSS = """
    AttemptTable {
        height: auto;
        max-height: 10;
        border: solid $secondary;
    }
    """

    def compose(self) -> ComposeResult:
        """Compose the attempt table."""
        yield DataTable(id="attempt-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#attempt-table", DataTable)
        table.add_column("#", key="attempt", width=4)
        table.add_column("PID", key="pid", width=8)
        table.add_column("HANGS", key="hangs", width=6)
        table.add_column("SIGNALS", key="signals", width=8)
        table.add_column("TIME", key="time", width=8)
        table.add_column("Outcome", key="outcome")

    def add_attempt(self, record: AttemptRecord) -> None:
        """Add a row for a finished attempt."""
        table = self.query_one("#attempt-table", DataTable)
        outcome = record.reason.describe() if record.reason else "unresolved"
        table.add_row(
            str(record.attempt),
            str(record.pid),
            str(record.hangs),
            str(record.signals_sent),
            f"{record.duration:.1f}s",
            outcome,
            key=str(record.attempt),
        )

    @property
    def row_count(self) -> int:
        """Number of attempts shown."""
        return self.query_one("#attempt-table", DataTable).row_count


class SupervisorApp(App):
    """Dashboard around one Supervisor run."""

    TITLE = "pyyoyo"
    SUB_TITLE = "hang-aware process supervisor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #status {
        dock: top;
    }

    #output {
        height: 8;
        border: solid $accent;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
    ]

    def __init__(self, config: SupervisorConfig, autostart: bool = True) -> None:
        """Initialize the SupervisorApp."""
        super().__init__()
        self._supervisor_config = config
        self._autostart = autostart
        self._update_queue: Queue[SupervisorEvent] = Queue()
        self._runner = SupervisorRunner(config, self._update_queue)
        self._reported_finish = False
        self._quitting = False

    @property
    def exit_status(self) -> int:
        """The supervisor's exit status, or failure if it never finished."""
        status = self._runner.exit_status
        return EXIT_FAILURE if status is None else status

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield StatusHeader(self._supervisor_config, id="status")
        yield ThreadTable()
        yield AttemptTable()
        yield Log(id="output")
        yield Footer()

    def on_mount(self) -> None:
        """Route logging to the output pane and start supervising."""
        configure_logging(self._supervisor_config.verbose, stream=QueueWriter(self._update_queue, prefix="log: "))
        if self._autostart:
            self._runner.start()
        self.set_interval(0.25, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the event queue and refresh the UI."""
        latest_tick: MonitorTick | None = None
        while True:
            try:
                event = self._update_queue.get_nowait()
            except Empty:
                break
            if isinstance(event, MonitorTick):
                latest_tick = event
            else:
                self._apply(event)

        if latest_tick is not None:
            self.query_one(StatusHeader).update_tick(latest_tick)
            self.query_one(ThreadTable).update_threads(latest_tick.snapshot)

        if not self._reported_finish and self._runner.exit_status is not None:
            self._reported_finish = True
            self.query_one(StatusHeader).mark_finished(self._runner.exit_status)
            self.notify(f"Supervision finished with exit status {self._runner.exit_status}")

    def _apply(self, event: SupervisorEvent) -> None:
        """Show an attempt record or an output line."""
        if isinstance(event, AttemptRecord):
            self.query_one(AttemptTable).add_attempt(event)
        else:
            self.query_one("#output", Log).write_line(event)

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        table = self.query_one(ThreadTable)
        new_sort_key = table.cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_quit(self) -> None:
        """Stop supervising, then leave."""
        if not self._runner.is_running:
            self.exit()
            return
        if self._quitting:
            return
        self._quitting = True
        self.notify("Stopping child...")
        # Terminating the child can take seconds; keep the UI responsive
        self.run_worker(self._stop_and_exit, thread=True, exclusive=True, name="stop-supervisor")

    def _stop_and_exit(self) -> None:
        """Worker thread body: stop the runner, then exit on the UI thread."""
        self._runner.stop()
        self.call_from_thread(self.exit)
