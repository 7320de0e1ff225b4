import os

from dotenv import find_dotenv, load_dotenv

from monzo_budget.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

DEFAULT_MONZO_API_URL = "https://api.monzo.com"
DEFAULT_SYNC_MAX_RETRIES = 3
DEFAULT_SYNC_BACKOFF_SECONDS = 1.0
DEFAULT_SYNC_PAGE_LIMIT = 100
DEFAULT_SYNC_METRICS_CAP = 50
DEFAULT_SYNC_RECENT_PULL_MINUTES = 60

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "MONZO_API_URL",
    "MONZO_TOKEN",
    "SYNC_MAX_RETRIES",
    "SYNC_BACKOFF_SECONDS",
    "SYNC_PAGE_LIMIT",
    "SYNC_METRICS_CAP",
    "SYNC_RECENT_PULL_MINUTES",
)


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    return find_dotenv(usecwd=True) or None


def _resolve_config_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    cwd = os.getcwd()
    candidate = os.path.join(cwd, "config", CONFIG_FILENAME)
    if os.path.exists(candidate):
        return candidate
    return os.path.join(cwd, CONFIG_FILENAME)


def _clean_value(raw_value: str) -> str:
    value = raw_value.strip()
    quote = value[:1]
    if quote in {'"', "'"}:
        closing = value.find(quote, 1)
        if closing > 0:
            return value[1:closing]
        return value[1:]
    # Unquoted values may carry a trailing comment
    if " #" in value:
        value = value.split(" #", 1)[0]
    return value.strip()


def read_config_file(path: str | None) -> dict[str, str]:
    """Read the flat ``KEY: value`` config file; unknown shapes are ignored."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            value = _clean_value(raw_value)
            if key and value:
                values[key] = value
    return values


def load_environment() -> None:
    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    # Real environment variables win over config.yaml
    file_values = read_config_file(_resolve_config_path())
    for key in _CONFIG_KEYS:
        if key not in os.environ and key in file_values:
            os.environ[key] = file_values[key]


def ensure_dirs(*paths: str | None) -> None:
    for path in paths:
        if path and path not in {".", "./"}:
            os.makedirs(path, exist_ok=True)


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_float(name: str, default: float, min_value: float | None = None) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %.2f.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("[ENV] %s='%s' below minimum %s, using default %.2f.", name, raw, min_value, default)
        return default
    return value


_SENSITIVE_ENV_MARKERS = ("KEY", "TOKEN", "SECRET", "PASSWORD", "AUTH", "BEARER")


def mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    sensitive = any(marker in name.upper() for marker in _SENSITIVE_ENV_MARKERS)
    if sanitized.lower().startswith("bearer ") or (sanitized.startswith("eyJ") and sanitized.count(".") == 2):
        sensitive = True
    if not sensitive:
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Logging configured environment variables (masked where needed).")
    for key in _CONFIG_KEYS:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else mask_env_value(key, raw_value)
        logger.info("[ENV] %s=%s", key, value)


# SSE headers to reduce proxy buffering and keep connections alive.
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")
CONFIG_DIR = os.getenv("CONFIG_DIR")

ensure_dirs(DATA_DIR, LOG_DIR, CONFIG_DIR)

MONZO_API_URL = os.getenv("MONZO_API_URL", DEFAULT_MONZO_API_URL)
SYNC_MAX_RETRIES = get_env_int("SYNC_MAX_RETRIES", DEFAULT_SYNC_MAX_RETRIES, min_value=0)
SYNC_BACKOFF_SECONDS = get_env_float("SYNC_BACKOFF_SECONDS", DEFAULT_SYNC_BACKOFF_SECONDS, min_value=0.0)
SYNC_PAGE_LIMIT = get_env_int("SYNC_PAGE_LIMIT", DEFAULT_SYNC_PAGE_LIMIT, min_value=1)
SYNC_METRICS_CAP = get_env_int("SYNC_METRICS_CAP", DEFAULT_SYNC_METRICS_CAP, min_value=1)
SYNC_RECENT_PULL_MINUTES = get_env_int(
    "SYNC_RECENT_PULL_MINUTES",
    DEFAULT_SYNC_RECENT_PULL_MINUTES,
    min_value=0,
)
