import asyncio
import json
import time
import uuid
from contextlib import asynccontextmanager, suppress
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from starlette.responses import PlainTextResponse, StreamingResponse

from . import __version__, upstream
from .config import get_config, load_env_file
from .debug import debug_print, mask_secret
from .rate_limiter import create_request_tracker
from .token_estimator import estimate_prompt_tokens, estimate_text_tokens
from .token_refresher import TokenRefresher

SSE_DONE = "data: [DONE]\n\n"

# --- Global State ---
request_tracker = create_request_tracker()
token_refresher = TokenRefresher(lambda: get_config())
START_TIME = time.time()
# { "total_requests": n, "total_tokens": n }
system_stats = {"total_requests": 0, "total_tokens": 0}


def reset_stats() -> None:
    system_stats["total_requests"] = 0
    system_stats["total_tokens"] = 0


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    global START_TIME
    START_TIME = time.time()
    load_env_file()
    config = get_config()
    debug_print(f"🔐 CHATGPT_SESSION_TOKEN set: {bool(config.get('session_token'))}")
    debug_print(f"🔐 CHATGPT_AUTHORIZATION set: {bool(config.get('authorization'))}")
    debug_print(
        f"⏱️  Rate limits: {config['max_requests_per_minute']} req/min, "
        f"{config['max_tokens_per_minute']} tokens/min"
    )

    refresh_task = asyncio.create_task(token_refresher.run_forever())
    debug_print("🔄 Credential check background task started")
    try:
        yield
    finally:
        refresh_task.cancel()
        with suppress(asyncio.CancelledError):
            await refresh_task


app = FastAPI(lifespan=lifespan)


def get_client_identity(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def openai_error_payload(message: str, type: str, code: object) -> dict:  # noqa: A002
    return {"error": {"message": str(message), "type": str(type), "code": code}}


def build_completion(model: str, content: str, *, finish_reason: str = "stop", usage: Optional[dict] = None) -> dict:
    return {
        "id": f"chatcmpl-{uuid.uuid4()}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": finish_reason,
        }],
        "usage": usage,
    }


def completion_as_sse(completion: dict):
    """Replay a finished completion as chat.completion.chunk events."""
    choice = completion["choices"][0]
    base = {
        "id": completion["id"],
        "object": "chat.completion.chunk",
        "created": completion["created"],
        "model": completion["model"],
    }
    first = dict(base, choices=[{
        "index": 0,
        "delta": {"role": "assistant", "content": choice["message"]["content"]},
        "finish_reason": None,
    }])
    last = dict(base, choices=[{"index": 0, "delta": {}, "finish_reason": choice["finish_reason"]}])
    if completion.get("usage"):
        last["usage"] = completion["usage"]
    yield f"data: {json.dumps(first)}\n\n"
    yield f"data: {json.dumps(last)}\n\n"
    yield SSE_DONE


# --- Client Rate Limiting ---

async def rate_limit_client(request: Request) -> str:
    identity = get_client_identity(request)
    config = get_config()
    now = time.time()

    if not request_tracker.admit_request(identity, now, config["max_requests_per_minute"]):
        retry_after = request_tracker.retry_after(identity, now)
        debug_print(f"⏱️  Rate limit exceeded for client: {identity}")
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    return identity


# --- OpenAI Compatible API Endpoints ---

@app.get("/health", response_class=PlainTextResponse)
async def health_check():
    return "OK"


@app.get("/status")
async def get_status():
    config = get_config()
    return {
        "version": __version__,
        "uptime_seconds": int(time.time() - START_TIME),
        "server_port": config["server_port"],
        "rate_limits": {
            "max_requests_per_minute": config["max_requests_per_minute"],
            "max_tokens_per_minute": config["max_tokens_per_minute"],
        },
        "stats": {
            "total_requests": system_stats["total_requests"],
            "total_tokens": system_stats["total_tokens"],
            "active_ips": request_tracker.active_identities(),
        },
    }


@app.get("/v1/models")
async def list_models():
    created = int(START_TIME)
    return {
        "object": "list",
        "data": [
            {"id": name, "object": "model", "created": created, "owned_by": "openai"}
            for name in upstream.MODEL_NAME_MAP
        ],
    }


@app.post("/v1/chat/completions")
async def chat_completions(request: Request, identity: str = Depends(rate_limit_client)):
    debug_print("\n" + "=" * 80 + f"\n🔵 NEW API REQUEST RECEIVED from {identity}\n" + "=" * 80)

    try:
        body = await request.json()
    except json.JSONDecodeError as e:
        debug_print(f"❌ Invalid JSON in request body: {e}")
        raise HTTPException(status_code=400, detail=f"Invalid JSON in request body: {str(e)}")

    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object.")

    model = body.get("model")
    messages = body.get("messages")
    stream = bool(body.get("stream", False))
    debug_print(f"🌊 Stream={stream} | 🤖 Model={model} | 💬 Messages={len(messages) if isinstance(messages, list) else 0}")

    if not model:
        raise HTTPException(status_code=400, detail="Missing 'model' in request body.")
    if not messages:
        raise HTTPException(status_code=400, detail="Missing 'messages' in request body.")
    if not isinstance(messages, list):
        raise HTTPException(status_code=400, detail="'messages' must be an array.")

    config = get_config()
    prompt_tokens = estimate_prompt_tokens(messages)
    now = time.time()
    if not request_tracker.record_tokens(identity, prompt_tokens, now, config["max_tokens_per_minute"]):
        debug_print(f"⏱️  Token budget exceeded for client: {identity} ({prompt_tokens} prompt tokens)")
        raise HTTPException(
            status_code=429,
            detail="Token rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(request_tracker.token_retry_after(identity, now))},
        )

    system_stats["total_requests"] += 1
    debug_print(f"🔑 Session token: {mask_secret(config.get('session_token'))}")

    try:
        content = await upstream.send_to_chatgpt(body, config)
    except upstream.UpstreamError as e:
        print(f"\n❌ ALL UPSTREAM ENDPOINTS FAILED for {identity}")
        print(f"📛 Last error: {e}")
        print("=" * 80 + "\n")
        completion = build_completion(model, f"Error: {e}", finish_reason="error")
        if stream:
            return StreamingResponse(completion_as_sse(completion), media_type="text/event-stream")
        return completion

    completion_tokens = estimate_text_tokens(content)
    total_tokens = prompt_tokens + completion_tokens
    system_stats["total_tokens"] += total_tokens

    if not request_tracker.record_tokens(identity, completion_tokens, time.time(), config["max_tokens_per_minute"]):
        debug_print(f"⚠️  Client {identity} went over the token budget with this reply")

    completion = build_completion(
        model,
        content,
        usage={
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": total_tokens,
        },
    )
    debug_print(f"✅ REQUEST COMPLETED ({total_tokens} tokens)\n" + "=" * 80 + "\n")

    if stream:
        return StreamingResponse(completion_as_sse(completion), media_type="text/event-stream")
    return completion


def run():
    load_env_file()
    config = get_config()
    port = config["server_port"]
    print("=" * 60)
    print("🚀 ChatGPT Bridge Server Starting...")
    print("=" * 60)
    print(f"📚 API Base URL: http://localhost:{port}/v1")
    print(f"📊 Status page: http://localhost:{port}/status")
    print("=" * 60)
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    run()
