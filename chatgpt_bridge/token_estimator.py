from .upstream import message_text

# Rough heuristic: ~4 characters per token, plus fixed per-message/request overhead.
CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4
REQUEST_OVERHEAD_TOKENS = 8


def estimate_text_tokens(text: str) -> int:
    return len(text or "") // CHARS_PER_TOKEN


def estimate_prompt_tokens(messages: list) -> int:
    tokens = REQUEST_OVERHEAD_TOKENS
    for message in messages or []:
        content = message.get("content") if isinstance(message, dict) else message
        tokens += MESSAGE_OVERHEAD_TOKENS + estimate_text_tokens(message_text(content))
    return tokens
