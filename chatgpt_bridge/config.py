import json
import os

from dotenv import load_dotenv

from .debug import debug_print

CONFIG_FILE = "config.json"
ENV_FILE = ".env"

# config key -> (environment variable, default)
ENV_OVERRIDES = {
    "session_token": ("CHATGPT_SESSION_TOKEN", ""),
    "authorization": ("CHATGPT_AUTHORIZATION", ""),
    "server_port": ("SERVER_PORT", 3000),
    "max_requests_per_minute": ("MAX_REQUESTS_PER_MINUTE", 60),
    "max_tokens_per_minute": ("MAX_TOKENS_PER_MINUTE", 40000),
    "upstream_timeout_seconds": ("UPSTREAM_TIMEOUT_SECONDS", 120),
    "probe_local_proxies": ("PROBE_LOCAL_PROXIES", True),
    "token_check_interval_seconds": ("TOKEN_CHECK_INTERVAL_SECONDS", 3600),
}


def load_env_file(path: str = ENV_FILE) -> bool:
    """Load a .env file from the working directory into os.environ (existing vars win)."""
    if not os.path.exists(path):
        debug_print(f"⚠️  {path} file not found in current directory")
        return False
    try:
        loaded = load_dotenv(path, override=False)
    except Exception as e:
        debug_print(f"❌ Failed to load {path} file: {e}")
        return False
    debug_print(f"✅ Loaded {path} file successfully")
    return bool(loaded)


def _coerce(raw, default):
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off"):
            return False
        return default
    if isinstance(default, int):
        try:
            return int(str(raw).strip())
        except (TypeError, ValueError):
            return default
    return str(raw).strip()


def get_config():
    try:
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            config = json.load(f)
        if not isinstance(config, dict):
            config = {}
    except FileNotFoundError:
        config = {}
    except json.JSONDecodeError as e:
        debug_print(f"⚠️  Config file error: {e}, using defaults")
        config = {}

    for key, (env_name, default) in ENV_OVERRIDES.items():
        env_value = os.environ.get(env_name)
        if env_value is not None and env_value.strip() != "":
            config[key] = _coerce(env_value, default)
        elif key in config:
            config[key] = _coerce(config[key], default)
        else:
            config[key] = default

    config["max_requests_per_minute"] = max(0, config["max_requests_per_minute"])
    config["max_tokens_per_minute"] = max(0, config["max_tokens_per_minute"])
    config["upstream_timeout_seconds"] = max(1, config["upstream_timeout_seconds"])
    config["token_check_interval_seconds"] = max(60, config["token_check_interval_seconds"])
    return config
