#!/usr/bin/env python3
"""
seher - run a coding agent as soon as its provider allows it
============================================================
Reads the session cookie for each configured agent from a local browser,
asks the provider whether the account is rate limited, waits for the
earliest reset when every agent is limited, then launches the chosen agent
in this terminal.

Usage:
    seher [-b BROWSER] [-p PROFILE] [-v | -q] [--] [agent args...]
    seher --list-browsers
"""

import argparse
import logging
import signal
import subprocess
import sys
import threading
from datetime import datetime
from typing import List, Optional

from agent_scheduler import Agent, Scheduler, prepare_agents
from agent_settings import load_settings
from browser_profiles import BrowserDetector, detect_all_browsers
from cookie_models import BrowserKind, SchedulingCancelled, SeherError
from cookie_store import CookieStoreAdapter
from timestamp_utils import format_duration, format_timestamp_for_display
from usage_probe import prober_for_command

EXIT_FAILURE = 1
EXIT_CANCELLED = 130


class Colors:
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    BOLD = '\033[1m'
    END = '\033[0m'


def colorize(text: str, color: str) -> str:
    """Add color to text if stderr is a terminal."""
    if sys.stderr.isatty():
        return f"{color}{text}{Colors.END}"
    return text


def status(tag: str, color: str, message: str, quiet: bool = False) -> None:
    """Status line on stderr; stdout belongs to the agent."""
    if not quiet:
        print(f"{colorize(tag, color)} {message}", file=sys.stderr)


def browser_arg(value: str) -> BrowserKind:
    try:
        return BrowserKind.parse(value)
    except ValueError:
        names = ", ".join(kind.value for kind in BrowserKind)
        raise argparse.ArgumentTypeError(f"unknown browser '{value}' (choose from {names})") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seher",
        description="Wait out provider rate limits, then launch a coding agent",
    )
    parser.add_argument("-b", "--browser", type=browser_arg,
                        help="Browser to read cookies from (default: try installed Chromium browsers)")
    parser.add_argument("-p", "--profile", help="Browser profile name (default: the browser's default)")
    parser.add_argument("--list-browsers", action="store_true", help="List detected browsers and profiles")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only report errors")
    parser.add_argument("agent_args", nargs=argparse.REMAINDER, help="Extra arguments passed to the agent")
    return parser


def configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def list_browsers(detector: BrowserDetector) -> int:
    profiles = detect_all_browsers(detector)
    if not profiles:
        status("[!]", Colors.YELLOW, "No browser profile with a cookie store found")
        return EXIT_FAILURE
    current = None
    for profile in profiles:
        if profile.browser is not current:
            current = profile.browser
            print(colorize(current.value, Colors.BOLD))
        print(f"  {profile.name:<20} {profile.path}")
    return 0


def agent_arguments(raw: List[str]) -> List[str]:
    if raw and raw[0] == "--":
        return raw[1:]
    return raw


def launch(command: List[str]) -> int:
    """Run the agent in this terminal and return its exit status.

    Ctrl-C reaches the whole foreground process group; the agent decides what
    it means, so seher ignores SIGINT until the agent exits.
    """
    try:
        agent = subprocess.Popen(command)
    except FileNotFoundError:
        print(f"{colorize('[✗]', Colors.RED)} Command not found: {command[0]}", file=sys.stderr)
        return EXIT_FAILURE

    previous_handler = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        return agent.wait()
    finally:
        signal.signal(signal.SIGINT, previous_handler)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    detector = BrowserDetector()
    if args.list_browsers:
        return list_browsers(detector)

    cancel = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())

    def announce_wait(agent: Agent, resets_at: datetime, seconds: float) -> None:
        status("[WAIT]", Colors.YELLOW,
               f"All agents rate limited; {agent.config.command} resets at "
               f"{format_timestamp_for_display(resets_at)} (in {format_duration(seconds)})",
               args.quiet)

    try:
        settings = load_settings()
        agents, failures = prepare_agents(
            settings.agents,
            CookieStoreAdapter(detector=detector),
            browser=args.browser,
            profile_name=args.profile,
            prober_factory=lambda command: prober_for_command(command, timeout=settings.timeout),
        )
        for failure in failures:
            status("[!]", Colors.YELLOW, str(failure), args.quiet)

        scheduler = Scheduler(
            agents,
            cancel=cancel,
            probe_retries=settings.probe_retries,
            retry_backoff=settings.retry_backoff,
            max_wait=settings.max_wait,
            on_wait=announce_wait,
        )
        decision = scheduler.run()
    except SchedulingCancelled:
        status("[✗]", Colors.RED, "Cancelled", args.quiet)
        return EXIT_CANCELLED
    except SeherError as e:
        print(f"{colorize('[✗]', Colors.RED)} {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    command = decision.agent.argv(agent_arguments(args.agent_args))
    status("[✓]", Colors.GREEN, f"Launching {' '.join(command)}", args.quiet)
    return launch(command)


if __name__ == '__main__':
    sys.exit(main())
