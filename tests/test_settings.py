import os

import pytest

from monzo_budget.core import settings
from monzo_budget.domain.timefmt import format_age, format_duration


def test_read_config_file(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "# comment\n"
        "MONZO_API_URL: 'https://api.example.test'\n"
        "SYNC_PAGE_LIMIT: 50 # smaller pages\n"
        "EMPTY:\n"
        "not a pair\n",
        encoding="utf-8",
    )

    values = settings.read_config_file(str(path))

    assert values == {"MONZO_API_URL": "https://api.example.test", "SYNC_PAGE_LIMIT": "50"}
    assert settings.read_config_file(str(tmp_path / "missing.yaml")) == {}


def test_get_env_int(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SYNC_PAGE_LIMIT", "25")
    assert settings.get_env_int("SYNC_PAGE_LIMIT", 100, min_value=1) == 25

    monkeypatch.setenv("SYNC_PAGE_LIMIT", "lots")
    assert settings.get_env_int("SYNC_PAGE_LIMIT", 100, min_value=1) == 100

    monkeypatch.setenv("SYNC_PAGE_LIMIT", "0")
    assert settings.get_env_int("SYNC_PAGE_LIMIT", 100, min_value=1) == 100

    monkeypatch.delenv("SYNC_PAGE_LIMIT")
    assert settings.get_env_int("SYNC_PAGE_LIMIT", 100) == 100


def test_get_env_float(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SYNC_BACKOFF_SECONDS", "0.25")
    assert settings.get_env_float("SYNC_BACKOFF_SECONDS", 1.0, min_value=0.0) == 0.25

    monkeypatch.setenv("SYNC_BACKOFF_SECONDS", "-1")
    assert settings.get_env_float("SYNC_BACKOFF_SECONDS", 1.0, min_value=0.0) == 1.0


@pytest.mark.parametrize(
    ("name", "value", "expected"),
    [
        ("MONZO_TOKEN", "abcdef123456", "ab...56"),
        ("MONZO_TOKEN", "abc", "****"),
        ("DATA_DIR", "/var/lib/monzo", "/var/lib/monzo"),
        ("HEADER", "Bearer secretvalue", "Be...ue"),
        ("LOG_LEVEL", "INFO\nextra", "INFO\\nextra"),
    ],
)
def test_mask_env_value(name: str, value: str, expected: str) -> None:
    assert settings.mask_env_value(name, value) == expected


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "0 ms"), (0.0123, "12.3 ms"), (2.5, "2.50 s"), (90, "1.50 min")],
)
def test_format_duration(seconds: float, expected: str) -> None:
    assert format_duration(seconds) == expected


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(30, "0 minutes ago"), (60, "1 minute ago"), (3 * 3600, "3 hours ago"), (86400, "1 day ago")],
)
def test_format_age(seconds: float, expected: str) -> None:
    assert format_age(seconds) == expected


def test_load_environment_prefers_real_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    (tmp_path / "config.yaml").write_text(
        "MONZO_API_URL: https://file.example.test\nSYNC_PAGE_LIMIT: 40\nUNLISTED_KEY: ignored\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv("MONZO_API_URL", "https://env.example.test")
    monkeypatch.delenv("SYNC_PAGE_LIMIT", raising=False)
    monkeypatch.delenv("UNLISTED_KEY", raising=False)

    settings.load_environment()

    assert os.environ["MONZO_API_URL"] == "https://env.example.test"
    assert os.environ["SYNC_PAGE_LIMIT"] == "40"
    assert "UNLISTED_KEY" not in os.environ
