"""Tests for the main application."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from hifz.app import HifzBot
from hifz.config import settings


@pytest.fixture
def mock_app() -> AsyncMock:
    """Create a mock application with async methods."""
    mock_app = AsyncMock()
    mock_app.initialize = AsyncMock()
    mock_app.start = AsyncMock()
    mock_app.updater = AsyncMock()
    mock_app.updater.start_polling = AsyncMock()
    mock_app.stop = AsyncMock()
    mock_app.shutdown = AsyncMock()
    mock_app.add_handler = MagicMock()
    return mock_app


@pytest.fixture
def bot(mock_app: AsyncMock, monkeypatch: pytest.MonkeyPatch):
    """Create a bot instance with mocked dependencies."""
    monkeypatch.setattr(settings.bot, "token", "test_token_123")
    monkeypatch.setattr(settings.monitoring, "port", None)

    mock_builder = MagicMock()
    mock_builder.token.return_value.build.return_value = mock_app

    with patch("telegram.ext.Application.builder", return_value=mock_builder):
        yield HifzBot()


@pytest.mark.asyncio
async def test_start(bot: HifzBot, mock_app: AsyncMock) -> None:
    """Test starting the bot."""
    await bot.start()

    assert bot.running
    assert bot.application is mock_app
    mock_app.add_handler.assert_called_once()
    mock_app.updater.start_polling.assert_awaited_once()

    await bot.stop()


@pytest.mark.asyncio
async def test_stop(bot: HifzBot, mock_app: AsyncMock) -> None:
    """Test stopping the bot."""
    await bot.start()
    await bot.stop()

    assert not bot.running
    assert bot.application is None
    mock_app.shutdown.assert_awaited_once()


@pytest.mark.asyncio
async def test_start_requires_token(bot: HifzBot, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.bot, "token", "")

    with pytest.raises(ValueError, match="TELEGRAM_BOT_TOKEN"):
        await bot.start()

    assert not bot.running
    assert bot.application is None


@pytest.mark.asyncio
async def test_start_serves_metrics(bot: HifzBot, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.monitoring, "port", 9191)

    with patch("hifz.app.start_monitoring") as start_monitoring:
        await bot.start()

    start_monitoring.assert_called_once_with(9191)
    await bot.stop()
