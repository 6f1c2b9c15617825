#!/usr/bin/env python3
"""
seher - Agent Scheduler
=======================
Probes every configured agent, picks the first one that is not rate limited,
or waits for the earliest reset and probes them all again.

    INIT -> PROBING -> READY
               |  ^
               v  |
             WAITING        (any round may end in FAILED)

Time and cancellation are injected (``Clock`` and a ``threading.Event``) so
the loop can be driven without real sleeping.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from cookie_models import (
    DEFAULT_AGENT,
    AgentConfig,
    AllAgentsUnauthenticated,
    Available,
    BrowserKind,
    Credential,
    Limited,
    ProbeFailed,
    RateLimitState,
    SchedulingCancelled,
    SchedulingDecision,
    SeherError,
    Unauthenticated,
    WaitLimitExceeded,
)
from cookie_store import CookieStoreAdapter, CookieTarget
from timestamp_utils import utc_now
from usage_probe import RateLimitProber, prober_for_command

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    INIT = "INIT"
    PROBING = "PROBING"
    WAITING = "WAITING"
    READY = "READY"
    FAILED = "FAILED"


class Clock:
    """Wall clock; ``wait`` returns True when interrupted by ``cancel``."""

    def now(self) -> datetime:
        return utc_now()

    def wait(self, seconds: float, cancel: threading.Event) -> bool:
        return cancel.wait(max(0.0, seconds))


@dataclass
class Agent:
    """A configured agent bound to the probe for its provider."""
    config: AgentConfig
    probe: Callable[[], RateLimitState]
    index: int = 0

    def describe(self) -> str:
        return f"agent #{self.index + 1} ({self.config.describe()})"


@dataclass
class ProbeOutcome:
    agent: Agent
    state: Optional[RateLimitState] = None
    error: Optional[SeherError] = None


class Scheduler:
    """Decides which agent to launch, and when.

    Args:
        agents: Agents in configuration order (earlier ones are preferred).
        clock: Time source and sleeper.
        cancel: Set to abort a wait promptly.
        probe_retries: Extra attempts after a ``ProbeFailed``.
        retry_backoff: First retry delay in seconds, doubled per attempt.
        max_wait: Give up instead of waiting past this many seconds from start.
        on_wait: Called with (agent, resets_at, seconds) before each wait.
    """

    def __init__(
        self,
        agents: Sequence[Agent],
        clock: Optional[Clock] = None,
        cancel: Optional[threading.Event] = None,
        probe_retries: int = 3,
        retry_backoff: float = 2.0,
        max_wait: Optional[float] = None,
        on_wait: Optional[Callable[[Agent, datetime, float], None]] = None,
    ):
        if not agents:
            raise ValueError("Scheduler needs at least one agent")
        self.agents = list(agents)
        self.clock = clock or Clock()
        self.cancel = cancel or threading.Event()
        self.probe_retries = probe_retries
        self.retry_backoff = retry_backoff
        self.max_wait = max_wait
        self.on_wait = on_wait
        self.state = SchedulerState.INIT
        self.rounds = 0

    def run(self) -> SchedulingDecision:
        """Block until an agent is usable.

        Raises:
            AllAgentsUnauthenticated: Every agent's session was rejected.
            ProbeFailed: No agent could be probed even after retries.
            SchedulingCancelled: ``cancel`` was set.
            WaitLimitExceeded: The earliest reset is beyond ``max_wait``.
        """
        started = self.clock.now()
        try:
            while True:
                self._check_cancelled()
                self.state = SchedulerState.PROBING
                outcomes = self.probe_all()
                self._check_cancelled()

                decision, wake = self.decide(outcomes, self.clock.now())
                if decision is not None:
                    self.state = SchedulerState.READY
                    logger.info("Selected agent #%d (%s)", decision.index + 1, decision.agent.describe())
                    return decision

                self.state = SchedulerState.WAITING
                self._wait_until(wake, started)
        except SeherError:
            self.state = SchedulerState.FAILED
            raise

    def probe_all(self) -> List[ProbeOutcome]:
        """Probe every agent; results come back in configuration order."""
        self.rounds += 1
        if len(self.agents) == 1:
            return [self._probe(self.agents[0])]
        with ThreadPoolExecutor(max_workers=len(self.agents)) as pool:
            return list(pool.map(self._probe, self.agents))

    def _probe(self, agent: Agent) -> ProbeOutcome:
        delay = self.retry_backoff
        for attempt in range(self.probe_retries + 1):
            try:
                return ProbeOutcome(agent, state=agent.probe())
            except Unauthenticated as e:
                logger.warning("%s: %s", agent.describe(), e)
                return ProbeOutcome(agent, error=e)
            except ProbeFailed as e:
                if attempt == self.probe_retries:
                    logger.warning("%s: giving up after %d attempts: %s", agent.describe(), attempt + 1, e)
                    return ProbeOutcome(agent, error=e)
                logger.info("%s: probe failed (%s), retrying in %gs", agent.describe(), e, delay)
                if self.clock.wait(delay, self.cancel):
                    return ProbeOutcome(agent, error=SchedulingCancelled("Cancelled while retrying a probe"))
                delay *= 2
            except SeherError as e:
                return ProbeOutcome(agent, error=e)
        raise AssertionError("unreachable")

    def decide(self, outcomes: List[ProbeOutcome],
               now: datetime) -> Tuple[Optional[SchedulingDecision], Optional[Tuple[Agent, datetime]]]:
        """Pure decision over one complete round of probe results.

        Returns:
            (decision, None) when an agent is usable now, else
            (None, (agent, resets_at)) for the earliest reset to wait for.
        """
        for outcome in outcomes:
            state = outcome.state
            if isinstance(state, Available):
                return SchedulingDecision(outcome.agent.config, now, outcome.agent.index), None
            # A reset already in the past counts as available
            if isinstance(state, Limited) and state.is_over(now):
                return SchedulingDecision(outcome.agent.config, now, outcome.agent.index), None

        limited = [(o.agent, o.state.resets_at) for o in outcomes if isinstance(o.state, Limited)]
        if limited:
            return None, min(limited, key=lambda item: item[1])

        errors = [o.error for o in outcomes]
        for error in errors:
            if isinstance(error, SchedulingCancelled):
                raise error
        if all(isinstance(error, Unauthenticated) for error in errors):
            names = ", ".join(o.agent.describe() for o in outcomes)
            raise AllAgentsUnauthenticated(f"No valid session for any agent: {names}")
        for outcome in outcomes:
            if isinstance(outcome.error, ProbeFailed):
                raise ProbeFailed(f"{outcome.agent.describe()}: {outcome.error}")
        first = next(o for o in outcomes if o.error is not None)
        raise first.error

    def _wait_until(self, wake: Tuple[Agent, datetime], started: datetime) -> None:
        agent, resets_at = wake
        if self.max_wait is not None and resets_at - started > timedelta(seconds=self.max_wait):
            raise WaitLimitExceeded(
                f"All agents limited; earliest reset ({agent.describe()}) at {resets_at.isoformat()} "
                f"is beyond the {self.max_wait:g}s wait limit"
            )

        seconds = max(0.0, (resets_at - self.clock.now()).total_seconds())
        logger.info("All agents limited; waiting %.0fs for %s", seconds, agent.describe())
        if self.on_wait is not None:
            self.on_wait(agent, resets_at, seconds)
        if self.clock.wait(seconds, self.cancel):
            raise SchedulingCancelled("Cancelled while waiting for a rate limit reset")

    def _check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise SchedulingCancelled("Cancelled")


def prepare_agents(
    configs: Sequence[AgentConfig],
    adapter: CookieStoreAdapter,
    browser: Optional[BrowserKind] = None,
    profile_name: Optional[str] = None,
    prober_factory: Callable[[str], RateLimitProber] = prober_for_command,
) -> Tuple[List[Agent], List[SeherError]]:
    """Bind each configured agent to a credential and a prober.

    Agents whose credential cannot be extracted are left out and their error
    returned, so other agents can still run.

    Raises:
        SeherError: No agent could be prepared (the first agent's error).
    """
    configs = list(configs) or [DEFAULT_AGENT]
    agents: List[Agent] = []
    errors: List[SeherError] = []
    credentials: Dict[CookieTarget, object] = {}

    for index, config in enumerate(configs):
        prober = prober_factory(config.command)
        target = prober.target
        if target not in credentials:
            try:
                profile, credentials[target] = adapter.find_credential(target, browser, profile_name)
                logger.info("Using %s for %s", profile.describe(), target.domain)
            except SeherError as e:
                credentials[target] = e

        found = credentials[target]
        if isinstance(found, SeherError):
            logger.warning("%s: %s", config.describe(), found)
            errors.append(found)
            continue
        agents.append(Agent(config, _bind(prober, found), index))

    if not agents:
        raise errors[0]
    return agents, errors


def _bind(prober: RateLimitProber, credential: Credential) -> Callable[[], RateLimitState]:
    return lambda: prober.probe(credential)
