"""Tests for the seher command line entry point."""

import argparse
import signal
import sys

import pytest

import seher
from agent_scheduler import Agent
from agent_settings import Settings
from browser_profiles import BrowserDetector
from cookie_models import AVAILABLE, AgentConfig, BrowserKind, NoCredential, SchedulingCancelled
from cookie_fixtures import cookie, make_chromium_profile


@pytest.fixture
def launched(monkeypatch):
    """Capture the launched command instead of running it."""
    calls = []

    class FakeAgent:
        def __init__(self, command):
            calls.append(command)

        def wait(self):
            calls.append(signal.getsignal(signal.SIGINT))
            return 7

    monkeypatch.setattr(seher.subprocess, "Popen", FakeAgent)
    monkeypatch.setattr(seher, "load_settings", lambda: Settings(agents=[AgentConfig("claude", ("--resume",))]))
    return calls


def _prepared(probe=lambda: AVAILABLE):
    def prepare_agents(configs, adapter, browser=None, profile_name=None, prober_factory=None):
        return [Agent(config, probe, i) for i, config in enumerate(configs)], []
    return prepare_agents


def test_launches_agent_and_propagates_status(monkeypatch, launched) -> None:
    """The chosen agent runs with its configured and trailing args; its status is returned."""
    monkeypatch.setattr(seher, "prepare_agents", _prepared())
    before = signal.getsignal(signal.SIGINT)
    assert seher.main(["-q", "--", "--continue"]) == 7
    # SIGINT is ignored only while the agent runs
    assert launched == [["claude", "--resume", "--continue"], signal.SIG_IGN]
    assert signal.getsignal(signal.SIGINT) is before


def test_extraction_failure_exits_nonzero(monkeypatch, launched, capsys) -> None:
    def prepare_agents(*args, **kwargs):
        raise NoCredential("Chrome profile 'Default': no 'sessionKey' cookie for claude.ai")

    monkeypatch.setattr(seher, "prepare_agents", prepare_agents)
    assert seher.main([]) == 1
    assert launched == []
    assert "sessionKey" in capsys.readouterr().err


def test_cancellation_exits_130(monkeypatch, launched) -> None:
    def cancelled():
        raise SchedulingCancelled("Cancelled")

    monkeypatch.setattr(seher, "prepare_agents", _prepared(cancelled))
    assert seher.main(["-q"]) == 130
    assert launched == []


def test_browser_option_is_passed_through(monkeypatch, launched) -> None:
    seen = {}

    def prepare_agents(configs, adapter, browser=None, profile_name=None, prober_factory=None):
        seen.update(browser=browser, profile=profile_name)
        return [Agent(configs[0], lambda: AVAILABLE, 0)], []

    monkeypatch.setattr(seher, "prepare_agents", prepare_agents)
    seher.main(["-q", "-b", "brave", "-p", "Profile 1"])
    assert seen == {"browser": BrowserKind.BRAVE, "profile": "Profile 1"}


def test_unknown_browser_is_rejected() -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        seher.browser_arg("netscape")
    with pytest.raises(SystemExit):
        seher.build_parser().parse_args(["-b", "netscape"])


def test_list_browsers(monkeypatch, tmp_path, capsys) -> None:
    make_chromium_profile(tmp_path / ".config" / "google-chrome", [cookie("a", "b")])
    monkeypatch.setattr(seher, "BrowserDetector",
                        lambda: BrowserDetector(home=tmp_path, platform="linux", environ={}))
    assert seher.main(["--list-browsers"]) == 0
    out = capsys.readouterr().out
    assert "Chrome" in out
    assert "Default" in out


def test_agent_arguments_strip_separator() -> None:
    assert seher.agent_arguments(["--", "-p", "hi"]) == ["-p", "hi"]
    assert seher.agent_arguments(["hi"]) == ["hi"]
    assert seher.agent_arguments([]) == []


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_ctrl_c_during_agent_run_goes_to_the_agent() -> None:
    """SIGINT aimed at seher while the agent runs neither kills it nor changes its status."""
    script = (
        "import os, signal, time\n"
        "signal.signal(signal.SIGINT, signal.SIG_IGN)\n"
        "time.sleep(0.3)\n"
        "os.kill(os.getppid(), signal.SIGINT)\n"
        "time.sleep(0.3)\n"
        "raise SystemExit(7)\n"
    )
    before = signal.getsignal(signal.SIGINT)
    assert seher.launch([sys.executable, "-c", script]) == 7
    assert signal.getsignal(signal.SIGINT) is before


def test_missing_agent_command(capsys) -> None:
    assert seher.launch(["/nonexistent/seher-agent"]) == 1
    assert "Command not found" in capsys.readouterr().err
