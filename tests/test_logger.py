import logging

import pytest

from monzo_budget.logger import ColourizedFormatter, RedactTokenFilter, get_logging_config


def _record(msg: str, *args) -> logging.LogRecord:
    return logging.LogRecord("monzo_budget.test", logging.INFO, __file__, 1, msg, args or None, None)


@pytest.mark.parametrize(
    ("msg", "args", "expected"),
    [
        ("[SYNC] GET %s", ("/transactions?access_token=abc123&limit=100",), "[SYNC] GET /transactions?access_token=****&limit=100"),
        ("Authorization: Bearer %s", ("eyJhbGci.payload.sig",), "Authorization: Bearer ****"),
    ],
)
def test_redact_filter_masks_tokens(msg: str, args: tuple, expected: str) -> None:
    record = _record(msg, *args)

    assert RedactTokenFilter().filter(record) is True
    assert record.getMessage() == expected


def test_redact_filter_leaves_plain_messages_alone() -> None:
    record = _record("[DEBT] Stored %s matches", 3)

    RedactTokenFilter().filter(record)

    assert record.msg == "[DEBT] Stored %s matches"
    assert record.args == (3,)


def test_colourized_formatter_restores_record() -> None:
    record = _record("[BUDGET] Total %s", 1200)
    formatter = ColourizedFormatter("%(levelname)s %(message)s")

    output = formatter.format(record)

    assert f"{ColourizedFormatter.CYAN}[BUDGET]{ColourizedFormatter.RESET} Total 1200" in output
    assert output.startswith(f"{ColourizedFormatter.GREEN}INFO")
    assert record.levelname == "INFO"
    assert record.getMessage() == "[BUDGET] Total 1200"


def test_logging_config_adds_file_handler(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = get_logging_config()

    assert config["handlers"]["file"]["filename"].endswith("monzo_budget.log")
    assert config["loggers"][""]["handlers"] == ["console", "file"]
    assert config["loggers"][""]["level"] == "DEBUG"
    assert config["loggers"]["httpx"]["level"] == "WARNING"
    assert (tmp_path / "logs").is_dir()


def test_logging_config_console_only(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOG_DIR", raising=False)

    config = get_logging_config()

    assert "file" not in config["handlers"]
    assert config["handlers"]["console"]["filters"] == ["redact"]
