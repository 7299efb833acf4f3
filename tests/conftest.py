"""Shared pytest fixtures."""

from collections.abc import Callable, Iterator
from unittest.mock import patch

import httpx
import pytest

from academic_gateway.config import Settings


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that call real provider APIs (needs API keys in env)",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="needs --run-live flag")
    for item in items:
        if "requires_live" in item.keywords:
            item.add_marker(skip_live)


def _make_settings(**overrides: object) -> Settings:
    """Settings isolated from the host environment: no keys unless given."""
    values: dict[str, object] = {
        "gemini_api_key": None,
        "api_key": None,
        "groq_api_key": None,
        "openrouter_api_key": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


SettingsFactory = Callable[..., Settings]


@pytest.fixture()
def settings_factory() -> SettingsFactory:
    return _make_settings


@pytest.fixture()
def settings() -> Settings:
    return _make_settings()


@pytest.fixture()
def no_network() -> Iterator[None]:
    """Fail the test if anything tries to send an HTTP request."""

    async def _forbidden(*args: object, **kwargs: object) -> httpx.Response:
        raise AssertionError("network access attempted")

    with patch.object(httpx.AsyncClient, "send", _forbidden):
        yield
