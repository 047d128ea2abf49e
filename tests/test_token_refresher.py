import unittest
from unittest.mock import AsyncMock, patch

import httpx

from chatgpt_bridge import token_refresher
from chatgpt_bridge.token_refresher import TokenRefresher


class TestTokenRefresher(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.config = {"session_token": "sess", "authorization": "Bearer tok", "token_check_interval_seconds": 3600}
        self.refresher = TokenRefresher(lambda: self.config)
        self.print_mock = patch.object(token_refresher, "debug_print").start()
        patch.object(token_refresher, "log_http_status").start()
        self.addCleanup(patch.stopall)

    def _patch_client(self, handler):
        real_async_client = httpx.AsyncClient
        transport = httpx.MockTransport(handler)
        return patch(
            "chatgpt_bridge.token_refresher.httpx.AsyncClient",
            side_effect=lambda *args, **kwargs: real_async_client(transport=transport),
        )

    async def test_valid_credentials(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"accessToken": "x"})

        with self._patch_client(handler):
            self.assertTrue(await self.refresher.check_tokens())

        self.assertEqual(self.refresher.last_result, True)
        self.assertIn("__Secure-next-auth.session-token=sess", seen[0].headers["Cookie"])
        self.assertEqual(seen[0].headers["Authorization"], "Bearer tok")

    async def test_invalid_credentials_ask_for_manual_update(self):
        with self._patch_client(lambda r: httpx.Response(401)):
            self.assertFalse(await self.refresher.check_tokens())

        printed = " ".join(str(c.args[0]) for c in self.print_mock.call_args_list)
        self.assertIn("manually", printed)
        # Credentials are left untouched.
        self.assertEqual(self.config["session_token"], "sess")

    async def test_run_once_respects_interval(self):
        check = AsyncMock(return_value=True)
        with patch.object(self.refresher, "check_tokens", check):
            ran = await self.refresher.run_once(now=self.refresher.last_check + 10)
            self.assertFalse(ran)
            check.assert_not_awaited()

            ran = await self.refresher.run_once(now=self.refresher.last_check + 3600)
            self.assertTrue(ran)
            check.assert_awaited_once()

    async def test_run_once_survives_network_errors(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        with self._patch_client(handler):
            ran = await self.refresher.run_once(now=self.refresher.last_check + 7200)

        self.assertTrue(ran)
        self.assertIsNone(self.refresher.last_result)

    async def test_explicit_interval_overrides_config(self):
        refresher = TokenRefresher(lambda: self.config, check_interval=120)
        self.assertEqual(refresher.check_interval, 120.0)
        self.assertEqual(self.refresher.check_interval, 3600.0)


if __name__ == "__main__":
    unittest.main()
