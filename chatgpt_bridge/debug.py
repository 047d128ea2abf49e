from typing import Optional

# Set to False to silence the console log
DEBUG = True

# Statuses the ChatGPT backend and its session endpoint actually answer with
UPSTREAM_STATUS = {
    200: ("✅", "OK"),
    401: ("🔒", "Unauthorized - session token or access token expired"),
    403: ("🚫", "Forbidden - Cloudflare challenge or blocked region"),
    404: ("⚠️", "Not Found - conversation endpoint moved"),
    413: ("⚠️", "Payload Too Large - conversation too long"),
    429: ("⏱️", "Too Many Requests - ChatGPT usage cap reached"),
    500: ("❌", "Internal Server Error"),
    502: ("❌", "Bad Gateway"),
    503: ("❌", "Service Unavailable"),
    504: ("❌", "Gateway Timeout"),
}


def debug_print(*args, **kwargs):
    if not DEBUG:
        return
    try:
        print(*args, **kwargs)
    except UnicodeEncodeError:
        # Consoles on legacy codepages cannot render the emoji prefixes.
        message = kwargs.get("sep", " ").join(str(a) for a in args) + kwargs.get("end", "\n")
        print(message.encode("ascii", errors="backslashreplace").decode("ascii"), end="")


def log_http_status(status_code: int, context: str = ""):
    """One console line per upstream response, e.g. ``🔒 HTTP 401: Unauthorized ... (session)``."""
    emoji, message = UPSTREAM_STATUS.get(status_code, ("✅" if status_code < 300 else "⚠️", "Unexpected status"))
    suffix = f" ({context})" if context else ""
    debug_print(f"{emoji} HTTP {status_code}: {message}{suffix}")


def mask_secret(value: Optional[str], keep: int = 12) -> str:
    value = (value or "").strip()
    if not value:
        return "<empty>"
    if len(value) <= keep:
        return value[:3] + "..."
    return value[:keep] + "..."
