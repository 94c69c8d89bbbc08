"""Command line entry point for pyyoyo."""

import argparse
import logging
import sys

from pyyoyo.config import DEFAULT_MAX_RETRIES, ConfigError, SupervisorConfig
from pyyoyo.detector import DEFAULT_HANG_TOLERANCE
from pyyoyo.log import configure_logging
from pyyoyo.monitor import DEFAULT_HANG_CHECK_INTERVAL, DEFAULT_MAX_HANGS
from pyyoyo.supervisor import EXIT_FAILURE, Supervisor

__version__ = "0.1.0"

EXIT_INTERRUPTED = 130

log = logging.getLogger("pyyoyo.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyyoyo",
        description=(
            "Runs a program and monitors /proc. Based on the thread counters in "
            "/proc, if the process looks hung pyyoyo will kill and restart it."
        ),
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s version {__version__}")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="output additional information (repeat for more)",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="suppress all diagnostic output",
    )
    parser.add_argument(
        "-w",
        "--wait-interval",
        type=float,
        metavar="SECONDS",
        help=f"seconds to sleep between checks (default {DEFAULT_HANG_CHECK_INTERVAL:g})",
    )
    parser.add_argument(
        "-m",
        "--max-hangs",
        type=int,
        metavar="NUM",
        help=f"number of hang checks answered with SIGTERM before SIGKILL (default {DEFAULT_MAX_HANGS})",
    )
    parser.add_argument(
        "-r",
        "--max-retries",
        type=int,
        metavar="NUM",
        help=f"total number of attempts to run the program (default {DEFAULT_MAX_RETRIES})",
    )
    parser.add_argument(
        "-t",
        "--hang-tolerance",
        type=int,
        metavar="TICKS",
        help=f"clock ticks of CPU time still counted as idle (default {DEFAULT_HANG_TOLERANCE})",
    )
    parser.add_argument("-f", "--fakeroot", metavar="PATH", help="path to look for /proc files")
    parser.add_argument("--tui", action="store_true", help="show a live dashboard while supervising")
    parser.add_argument(
        "--child-log",
        metavar="PATH",
        help="with --tui, append the program's output to PATH (default /dev/null)",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="program and its arguments")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the pyyoyo command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help(sys.stdout)
        return EXIT_FAILURE

    verbosity = -1 if args.quiet else args.verbose
    child_log = args.child_log
    if args.tui and child_log is None:
        child_log = "/dev/null"

    try:
        config = SupervisorConfig.resolve(
            args.command,
            interval=args.wait_interval,
            max_hangs=args.max_hangs,
            max_retries=args.max_retries,
            hang_tolerance=args.hang_tolerance,
            fakeroot=args.fakeroot,
            verbose=verbosity,
            child_log=child_log,
        )
    except ConfigError as exc:
        parser.error(str(exc))

    if args.tui:
        from pyyoyo.app import SupervisorApp

        app = SupervisorApp(config)
        app.run()
        return app.exit_status

    configure_logging(verbosity)
    if verbosity > 0:
        print(f"verbosity: {verbosity}", flush=True)

    supervisor = Supervisor(config)
    try:
        return supervisor.run()
    except KeyboardInterrupt:
        log.warning("interrupted, stopping child")
        supervisor.stop()
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
