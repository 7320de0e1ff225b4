import logging
import logging.config
import os
import re

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_TAG_PATTERN = re.compile(r"^\[[A-Z]+\]")
_TOKEN_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    re.compile(r"(access_token=)[^&\s]+"),
)


class RedactTokenFilter(logging.Filter):
    """
    Masks Monzo access tokens that end up in log messages.

    Request URLs and auth headers are logged by the client and by httpx; the
    rendered message is rewritten in place so every handler sees the masked text.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        for pattern in _TOKEN_PATTERNS:
            redacted = pattern.sub(r"\1****", redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class ColourizedFormatter(logging.Formatter):
    """Colours the level name and the leading ``[TAG]`` of each record."""
    GREY = "\x1b[90m"
    GREEN = "\x1b[32m"
    YELLOW = "\x1b[33m"
    RED = "\x1b[31m"
    BOLD_RED = "\x1b[31;1m"
    CYAN = "\x1b[36m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        orig_levelname = record.levelname
        orig_msg, orig_args = record.msg, record.args

        colour = self.LEVEL_COLORS.get(record.levelno)
        if colour:
            record.levelname = f"{colour}{record.levelname}{self.RESET}"
        message = record.getMessage()
        tag = _TAG_PATTERN.match(message)
        if tag:
            record.msg = f"{self.CYAN}{tag.group(0)}{self.RESET}{message[tag.end():]}"
            record.args = None

        try:
            return super().format(record)
        finally:
            # Other handlers share the record
            record.levelname = orig_levelname
            record.msg, record.args = orig_msg, orig_args


def _quiet_logger(handlers: list[str], level: str) -> dict:
    return {"handlers": handlers, "level": level, "propagate": False}


def get_logging_config() -> dict:
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = os.getenv("LOG_DIR")
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "colour",
            "filters": ["redact"],
        },
    }
    root_handlers = ["console"]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, "monzo_budget.log"),
            "formatter": "plain",
            "filters": ["redact"],
        }
        root_handlers.append("file")

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "redact": {"()": "monzo_budget.logger.RedactTokenFilter"},
        },
        "formatters": {
            "colour": {"()": "monzo_budget.logger.ColourizedFormatter", "format": LOG_FORMAT},
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": {
            "": {"handlers": root_handlers, "level": log_level_name},
            "monzo_budget": {"level": log_level_name},
            # httpx logs every request line, URL query included
            "httpx": _quiet_logger(root_handlers, "WARNING"),
            "uvicorn": _quiet_logger(root_handlers, "INFO"),
            "uvicorn.error": _quiet_logger(root_handlers, "INFO"),
            "uvicorn.access": _quiet_logger(root_handlers, "INFO"),
        },
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
