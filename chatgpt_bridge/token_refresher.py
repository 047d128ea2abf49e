import asyncio
import time
from typing import Callable, Optional

import httpx

from .debug import debug_print, log_http_status
from .upstream import SESSION_COOKIE_NAME, SESSION_URL, USER_AGENT

# How often the loop wakes up to see whether a check is due.
POLL_INTERVAL_SECONDS = 60


class TokenRefresher:
    """
    Periodically checks that the configured ChatGPT credentials still work.

    There is no automatic refresh: when the session endpoint rejects the
    credentials the operator has to update them by hand.
    """

    def __init__(self, get_config: Callable[[], dict], check_interval: Optional[float] = None) -> None:
        self._get_config = get_config
        self._check_interval = check_interval
        self.last_check = time.time()
        self.last_result: Optional[bool] = None

    @property
    def check_interval(self) -> float:
        if self._check_interval is not None:
            return float(self._check_interval)
        return float(self._get_config().get("token_check_interval_seconds", 3600))

    async def validate_tokens(self, config: dict) -> bool:
        headers = {
            "Cookie": f"{SESSION_COOKIE_NAME}={config.get('session_token', '')}",
            "Authorization": str(config.get("authorization") or ""),
            "User-Agent": USER_AGENT,
        }
        timeout = float(config.get("upstream_timeout_seconds", 120))
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(SESSION_URL, headers=headers)
        log_http_status(response.status_code, "credential check")
        return 200 <= response.status_code < 300

    async def check_tokens(self) -> bool:
        config = self._get_config()
        valid = await self.validate_tokens(config)
        self.last_result = valid
        if valid:
            debug_print("✅ Credentials are still valid, no refresh needed")
        else:
            debug_print("⚠️  Credentials rejected by the session endpoint.")
            debug_print("⚠️  Automatic refresh is not supported. Update CHATGPT_SESSION_TOKEN and CHATGPT_AUTHORIZATION manually (.env or config.json).")
        return valid

    async def run_once(self, now: Optional[float] = None) -> bool:
        """Run a check if the interval has elapsed. Returns True if a check ran."""
        now = time.time() if now is None else now
        if now - self.last_check < self.check_interval:
            return False
        try:
            await self.check_tokens()
        except httpx.HTTPError as e:
            debug_print(f"❌ Credential check failed: {e}")
        self.last_check = time.time()
        return True

    async def run_forever(self):
        """Background task to validate credentials every check interval"""
        while True:
            try:
                await asyncio.sleep(POLL_INTERVAL_SECONDS)
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                debug_print(f"❌ Error in credential check task: {e}")
                # Continue the loop even if there's an error
                continue
