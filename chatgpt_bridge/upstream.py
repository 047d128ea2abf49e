import asyncio
import json
import os
import uuid
from typing import List, Optional, Tuple

import httpx

from .debug import debug_print, log_http_status, mask_secret
from .normalizer import normalize

CHAT_ORIGIN = "https://chat.openai.com"
SESSION_URL = f"{CHAT_ORIGIN}/api/auth/session"

# Equivalent conversation endpoints, tried in order until one answers.
API_ENDPOINTS = (
    f"{CHAT_ORIGIN}/backend-api/conversation",
    f"{CHAT_ORIGIN}/api/conversation",
)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

SESSION_COOKIE_NAME = "__Secure-next-auth.session-token"

# Common local proxy ports (v2rayN, Clash, generic SOCKS/HTTP) used as a last resort.
LOCAL_PROXY_CANDIDATES = (
    ("127.0.0.1", 10809),
    ("127.0.0.1", 7890),
    ("127.0.0.1", 1080),
    ("127.0.0.1", 8080),
)
LOCAL_PROXY_PROBE_TIMEOUT = 0.3

DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 1.0

MODEL_NAME_MAP = {
    "gpt-3.5-turbo": "text-davinci-002-render-sha",
    "gpt-3.5-turbo-0613": "text-davinci-002-render-sha",
    "gpt-3.5-turbo-16k": "text-davinci-002-render-sha",
    "gpt-3.5-turbo-16k-0613": "text-davinci-002-render-sha",
    "gpt-4": "gpt-4",
    "gpt-4-0613": "gpt-4",
    "gpt-4-32k": "gpt-4-32k",
    "gpt-4-32k-0613": "gpt-4-32k",
    "gpt-4o": "gpt-4o",
    "gpt-4o-mini": "gpt-4o-mini",
    "gpt-4.5": "gpt-4.5-preview",
    "gpt-4.5-preview": "gpt-4.5-preview",
    "o1": "o1",
    "o1-pro": "o1-pro",
    "o3-mini": "o3-mini",
    "o3-mini-high": "o3-mini-high",
    "gpt-4-turbo": "gpt-4-turbo",
}


class UpstreamError(Exception):
    """Every candidate endpoint failed. Carries the last failure for diagnostics."""

    def __init__(self, message: str, *, url: Optional[str] = None, status_code: Optional[int] = None, attempts: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.attempts = list(attempts or [])


def map_model_name(model_name: str) -> str:
    """Map an OpenAI API model name to the identifier the web backend expects."""
    return MODEL_NAME_MAP.get(model_name, model_name)


def message_text(content) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        # OpenAI content-part arrays: keep the text parts only
        texts = []
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text":
                texts.append(str(part.get("text") or ""))
            elif isinstance(part, str):
                texts.append(part)
        return "\n".join(texts)
    if content is None:
        return ""
    return str(content)


def build_chatgpt_payload(body: dict) -> dict:
    messages = body.get("messages") or []
    temperature = body.get("temperature")
    top_p = body.get("top_p")
    return {
        "action": "next",
        "messages": [
            {
                "id": str(uuid.uuid4()),
                "role": "user",
                "content": {
                    "content_type": "text",
                    "parts": [message_text(m.get("content")) for m in messages if isinstance(m, dict)],
                },
            }
        ],
        "model": map_model_name(str(body.get("model") or "")),
        "conversation_id": None,
        "parent_message_id": str(uuid.uuid4()),
        "temperature": DEFAULT_TEMPERATURE if temperature is None else temperature,
        "top_p": DEFAULT_TOP_P if top_p is None else top_p,
    }


def build_cookie_header(session_token: str, cf_clearance: Optional[str] = None) -> str:
    if cf_clearance is None:
        cf_clearance = os.environ.get("CF_CLEARANCE", "")
    cookie_parts = [
        f"{SESSION_COOKIE_NAME}={session_token}",
        f"cf_clearance={cf_clearance}",
        f"__Secure-next-auth.callback-url={CHAT_ORIGIN}/",
    ]
    return "; ".join(cookie_parts)


def get_request_headers(access_token: str, session_token: str) -> dict:
    """Browser-like headers for the conversation endpoint."""
    return {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        "Accept": "text/event-stream",
        "Referer": f"{CHAT_ORIGIN}/",
        "Origin": CHAT_ORIGIN,
        "sec-ch-ua": '"Not_A Brand";v="99", "Google Chrome";v="120", "Chromium";v="120"',
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "Sec-Fetch-Dest": "empty",
        "Sec-Fetch-Mode": "cors",
        "Sec-Fetch-Site": "same-origin",
        "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
        "Cookie": build_cookie_header(session_token),
    }


def _env_first(*names: str) -> Optional[str]:
    for name in names:
        value = (os.environ.get(name) or "").strip()
        if value:
            return value
    return None


async def _port_accepts_connections(host: str, port: int, timeout: float = LOCAL_PROXY_PROBE_TIMEOUT) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def _proxy_is_usable(proxy_url: str) -> bool:
    """Whether httpx can build a transport for this proxy URL (scheme known, extras installed)."""
    try:
        httpx.AsyncHTTPTransport(proxy=proxy_url)
    except (ValueError, ImportError, httpx.InvalidURL) as e:
        debug_print(f"⚠️  Ignoring unusable proxy {proxy_url}: {e}")
        return False
    return True


async def resolve_proxy(config: Optional[dict] = None) -> Optional[str]:
    """
    Pick the proxy for this call from the environment, read fresh every time.

    Order: HTTPS proxy, HTTP proxy, generic ALL_PROXY (``http://`` assumed when it has
    no scheme), then well-known local proxy ports that are actually listening.
    A value httpx cannot use is logged and skipped. Returns None to go direct.
    """
    cfg = config or {}

    for label, names in (
        ("HTTPS", ("HTTPS_PROXY", "https_proxy")),
        ("HTTP", ("HTTP_PROXY", "http_proxy")),
        ("ALL", ("ALL_PROXY", "all_proxy")),
    ):
        proxy_url = _env_first(*names)
        if not proxy_url:
            continue
        if label == "ALL" and "://" not in proxy_url:
            proxy_url = f"http://{proxy_url}"
        if _proxy_is_usable(proxy_url):
            debug_print(f"🌐 Using {label} proxy: {proxy_url}")
            return proxy_url

    if not cfg.get("probe_local_proxies", True):
        return None

    for host, port in LOCAL_PROXY_CANDIDATES:
        if await _port_accepts_connections(host, port):
            proxy_url = f"http://{host}:{port}"
            debug_print(f"🌐 Using local HTTP proxy: {proxy_url}")
            return proxy_url

    debug_print("🌐 No proxy configured, connecting directly")
    return None


async def resolve_access_token(config: dict, *, proxy_url: Optional[str] = None, timeout: float = 120) -> str:
    """
    Turn the configured authorization into a usable access token.

    Bearer/JWT-looking values are used directly. Anything else triggers one lookup of
    the session endpoint; when that fails the configured value is used unchanged.
    """
    authorization = str(config.get("authorization") or "").strip()
    session_token = str(config.get("session_token") or "").strip()

    if authorization.startswith("Bearer "):
        debug_print("🔑 Using Bearer authorization from config")
        return authorization[len("Bearer "):].strip()
    if authorization.startswith("eyJ"):
        debug_print("🔑 Using JWT authorization from config")
        return authorization

    debug_print("🔑 Fetching access token with session token...")
    headers = {
        "Cookie": f"{SESSION_COOKIE_NAME}={session_token}",
        "User-Agent": USER_AGENT,
    }
    try:
        async with httpx.AsyncClient(proxy=proxy_url, timeout=timeout, trust_env=False) as client:
            response = await client.get(SESSION_URL, headers=headers)
        log_http_status(response.status_code, "session lookup")
        if response.status_code < 200 or response.status_code >= 300:
            debug_print(f"❌ Session lookup failed: {response.text[:200]}")
        else:
            data = response.json()
            access_token = data.get("accessToken") if isinstance(data, dict) else None
            if isinstance(access_token, str) and access_token:
                debug_print(f"✅ Got access token: {mask_secret(access_token)}")
                return access_token
            debug_print("⚠️  Session response has no accessToken")
    except httpx.HTTPError as e:
        debug_print(f"❌ Session lookup request failed: {e}")
    except (json.JSONDecodeError, ValueError) as e:
        debug_print(f"❌ Failed to parse session response: {e}")

    debug_print("⚠️  Could not obtain a fresh access token, using configured authorization as-is")
    debug_print(f"⚠️  Make sure the session token is current and you are logged in at {CHAT_ORIGIN}")
    return authorization


async def send(
    payload: dict,
    access_token: str,
    session_token: str,
    *,
    proxy_url: Optional[str] = None,
    timeout: float = 120,
    endpoints: Tuple[str, ...] = API_ENDPOINTS,
) -> str:
    """POST the payload to each candidate endpoint until one returns a non-empty 2xx body."""
    headers = get_request_headers(access_token, session_token)
    attempts: List[str] = []
    last_error: Optional[UpstreamError] = None

    async with httpx.AsyncClient(proxy=proxy_url, timeout=timeout, trust_env=False, follow_redirects=True) as client:
        for url in endpoints:
            debug_print(f"📤 Trying endpoint: {url}")
            try:
                response = await client.post(url, headers=headers, json=payload)
                body_text = response.text
            except httpx.HTTPError as e:
                detail = f"Request failed for {url}: {type(e).__name__}: {e}"
                debug_print(f"❌ {detail}")
                attempts.append(detail)
                last_error = UpstreamError(detail, url=url, attempts=attempts)
                continue

            log_http_status(response.status_code, url)
            if 200 <= response.status_code < 300:
                if not body_text:
                    detail = f"Empty response body from {url}"
                    debug_print(f"⚠️  {detail}, trying next endpoint")
                    attempts.append(detail)
                    last_error = UpstreamError(detail, url=url, status_code=response.status_code, attempts=attempts)
                    continue
                debug_print(f"✅ Got reply from {url} ({len(body_text)} chars)")
                return body_text

            if response.status_code == 403:
                debug_print("🚫 Hit Cloudflare protection, trying next endpoint")
            detail = f"API error from {url}: status {response.status_code} {response.reason_phrase}, body: {body_text[:500]}"
            debug_print(f"❌ {detail}")
            attempts.append(detail)
            last_error = UpstreamError(detail, url=url, status_code=response.status_code, attempts=attempts)

    if last_error is None:
        raise UpstreamError("No upstream endpoints configured")
    raise last_error


async def send_to_chatgpt(body: dict, config: dict) -> str:
    """Translate an OpenAI chat request, send it upstream and return the normalized answer."""
    timeout = float(config.get("upstream_timeout_seconds", 120))
    proxy_url = await resolve_proxy(config)
    access_token = await resolve_access_token(config, proxy_url=proxy_url, timeout=timeout)

    payload = build_chatgpt_payload(body)
    debug_print(f"📦 Upstream model: {payload['model']} | parts: {len(payload['messages'][0]['content']['parts'])}")

    raw = await send(
        payload,
        access_token,
        str(config.get("session_token") or ""),
        proxy_url=proxy_url,
        timeout=timeout,
    )
    return normalize(raw)
