#!/usr/bin/env python3
"""
seher - Rate-Limit Prober
=========================
Asks the provider behind an agent whether the account is rate limited,
authenticating with the session cookie pulled from the browser.

claude.ai: GET /api/organizations/<org>/usage   (org from the lastActiveOrg cookie)
Copilot:   GET https://github.com/github-copilot/chat (quota JSON)
Requires: httpx
"""

import logging
import os
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import unquote

import httpx

from cookie_models import AVAILABLE, Credential, Limited, ProbeFailed, RateLimitState, Unauthenticated
from cookie_store import CookieTarget
from timestamp_utils import parse_iso8601, parse_reset_date, utc_now

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)

DEFAULT_TIMEOUT = 15.0

# Re-check interval when the provider says "limited" without a reset time
DEFAULT_FALLBACK_RECHECK = 300.0

UUID_PATTERN = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")


class RateLimitProber:
    """One authenticated status request per ``probe`` call."""

    name = ""
    target: CookieTarget

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
        fallback_recheck: float = DEFAULT_FALLBACK_RECHECK,
        now: Callable[[], datetime] = utc_now,
    ):
        self._client = client
        self.timeout = timeout
        self.fallback_recheck = fallback_recheck
        self._now = now

    def probe(self, credential: Credential) -> RateLimitState:
        """Current rate-limit state for the account behind ``credential``.

        Raises:
            Unauthenticated: The provider rejected the session (401/403).
            ProbeFailed: Network error, timeout, 429/5xx or unreadable body.
        """
        payload = self._fetch(credential)
        state = self.parse(payload)
        logger.debug("%s probe: %s", self.name, state)
        return state

    def parse(self, payload: Any) -> RateLimitState:
        raise NotImplementedError

    def request(self, credential: Credential) -> Tuple[str, Dict[str, str]]:
        """(url, headers) for the status request."""
        raise NotImplementedError

    def _limited(self, resets_at: Optional[datetime]) -> Limited:
        if resets_at is None:
            resets_at = self._now() + timedelta(seconds=self.fallback_recheck)
            logger.info("%s reports a limit without a reset time; re-checking at %s", self.name, resets_at)
        return Limited(resets_at)

    def _send(self, client: httpx.Client, url: str, headers: Dict[str, str]) -> httpx.Response:
        try:
            return client.get(url, headers=headers)
        except httpx.TimeoutException:
            raise ProbeFailed(f"{self.name}: request timed out after {self.timeout:g}s") from None
        except httpx.HTTPError as e:
            raise ProbeFailed(f"{self.name}: {type(e).__name__}: {e}") from None

    def _fetch(self, credential: Credential) -> Any:
        url, headers = self.request(credential)
        if self._client is not None:
            response = self._send(self._client, url, headers)
        else:
            with httpx.Client(timeout=self.timeout, follow_redirects=False) as client:
                response = self._send(client, url, headers)

        status = response.status_code
        if status in (401, 403):
            raise Unauthenticated(f"{self.name}: session rejected (HTTP {status}); log in again in the browser")
        if not response.is_success:
            # Cloudflare error pages are long
            body = response.text[:200]
            raise ProbeFailed(f"{self.name}: HTTP {status}: {body}")

        try:
            return response.json()
        except ValueError:
            raise ProbeFailed(f"{self.name}: response is not JSON") from None

    def _headers(self, credential: Credential) -> Dict[str, str]:
        return {
            "Cookie": credential.cookie_header(),
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
            "Accept-Language": "en-US,en;q=0.9",
        }


class ClaudeUsageProber(RateLimitProber):
    """claude.ai usage windows; any window at 100% means limited."""

    name = "claude.ai"
    base_url = "https://claude.ai"
    target = CookieTarget(
        domain="claude.ai",
        session_cookie="sessionKey",
        companion_cookies=("lastActiveOrg",),
        required_companions=("lastActiveOrg",),
    )
    windows = ("five_hour", "seven_day", "seven_day_opus", "seven_day_sonnet")

    @staticmethod
    def organization_id(credential: Credential) -> str:
        raw = credential.companion("lastActiveOrg") or ""
        match = UUID_PATTERN.search(unquote(raw))
        if not match:
            raise Unauthenticated("claude.ai: lastActiveOrg cookie does not hold an organization id")
        return match.group(0).lower()

    def request(self, credential: Credential) -> Tuple[str, Dict[str, str]]:
        org_id = self.organization_id(credential)
        headers = self._headers(credential)
        headers.update({
            "Referer": f"{self.base_url}/",
            "Origin": self.base_url,
            "sec-fetch-dest": "empty",
            "sec-fetch-mode": "cors",
            "sec-fetch-site": "same-origin",
        })
        return f"{self.base_url}/api/organizations/{org_id}/usage", headers

    def parse(self, payload: Any) -> RateLimitState:
        if not isinstance(payload, dict):
            raise ProbeFailed(f"{self.name}: unexpected usage payload")

        exhausted = []
        for window in self.windows:
            entry = payload.get(window)
            if not isinstance(entry, dict):
                continue
            utilization = entry.get("utilization")
            if isinstance(utilization, (int, float)) and utilization >= 100:
                exhausted.append(entry)

        if not exhausted:
            return AVAILABLE

        resets = [parse_iso8601(entry.get("resets_at")) for entry in exhausted]
        resets = [moment for moment in resets if moment is not None]
        # Every exhausted window has to reset before the account is usable
        return self._limited(max(resets) if resets else None)


class CopilotQuotaProber(RateLimitProber):
    """GitHub Copilot chat / premium-interaction quotas."""

    name = "copilot"
    url = "https://github.com/github-copilot/chat"
    target = CookieTarget(
        domain="github.com",
        session_cookie="user_session",
        companion_cookies=("__Host-user_session_same_site", "logged_in", "dotcom_user"),
    )

    def request(self, credential: Credential) -> Tuple[str, Dict[str, str]]:
        headers = self._headers(credential)
        headers.update({
            "github-verified-fetch": "true",
            "x-requested-with": "XMLHttpRequest",
        })
        return self.url, headers

    def parse(self, payload: Any) -> RateLimitState:
        quotas = payload.get("quotas") if isinstance(payload, dict) else None
        if not isinstance(quotas, dict) or not isinstance(quotas.get("remaining"), dict):
            raise ProbeFailed(f"{self.name}: unexpected quota payload")

        remaining = quotas["remaining"]
        exhausted = [
            key for key in ("chatPercentage", "premiumInteractionsPercentage")
            if isinstance(remaining.get(key), (int, float)) and remaining[key] <= 0
        ]
        if not exhausted:
            return AVAILABLE
        return self._limited(parse_reset_date(quotas.get("resetDate")))


PROBERS = {
    "claude": ClaudeUsageProber,
    "copilot": CopilotQuotaProber,
}


def prober_for_command(command: str, **kwargs) -> RateLimitProber:
    """Prober for an agent command; unknown commands are treated as claude."""
    name = os.path.splitext(os.path.basename(command))[0].lower()
    prober_cls = PROBERS.get(name)
    if prober_cls is None:
        logger.debug("No provider registered for %s, assuming claude.ai", name)
        prober_cls = ClaudeUsageProber
    return prober_cls(**kwargs)
