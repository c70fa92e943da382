"""
Unit tests for the voice-tutor CLI commands.
"""

import pytest
from unittest.mock import AsyncMock, Mock, patch

from pydantic import SecretStr
from typer.testing import CliRunner

from config import Settings
from src.cli.voice_tutor import app, run_study
from src.session.exceptions import EmptyQueueError

runner = CliRunner()


def make_settings(**overrides):
    return Settings(_env_file=None, log_file=None, **overrides)


class TestCheckCommand:
    """Tests for `voice-tutor check`."""

    def test_all_configured(self):
        settings = make_settings(openai_api_key=SecretStr("sk-test"))
        with patch("src.cli.voice_tutor.get_settings", return_value=settings), \
                patch("src.cli.voice_tutor.AnkiClient") as client_cls:
            client_cls.return_value.check_connection.return_value = True
            result = runner.invoke(app, ["check"])

        assert result.exit_code == 0
        assert "configured" in result.output

    def test_missing_key_fails(self):
        settings = make_settings(openai_api_key=None)
        with patch("src.cli.voice_tutor.get_settings", return_value=settings), \
                patch("src.cli.voice_tutor.AnkiClient") as client_cls:
            client_cls.return_value.check_connection.return_value = True
            result = runner.invoke(app, ["check"])

        assert result.exit_code == 1
        assert "missing" in result.output


class TestDecksCommand:
    """Tests for `voice-tutor decks`."""

    def test_lists_decks(self):
        with patch("src.cli.voice_tutor.AnkiClient") as client_cls:
            client_cls.return_value.get_deck_names.return_value = ["Biology", "Spanish"]
            result = runner.invoke(app, ["decks"])

        assert result.exit_code == 0
        assert "Biology" in result.output
        assert "Spanish" in result.output


class TestRunStudy:
    """Tests for the session runner."""

    @pytest.mark.asyncio
    async def test_empty_deck_reports_and_exits_cleanly(self):
        orchestrator = Mock()
        orchestrator.start_session = AsyncMock(side_effect=EmptyQueueError("Spanish"))
        orchestrator.end_session = AsyncMock()

        with patch("src.cli.voice_tutor.get_settings", return_value=make_settings()), \
                patch("src.cli.voice_tutor.RealtimeTransport"), \
                patch("src.cli.voice_tutor.AnkiItemSource"), \
                patch("src.cli.voice_tutor.SessionOrchestrator", return_value=orchestrator):
            exit_code = await run_study("Spanish")

        assert exit_code == 0
        orchestrator.end_session.assert_awaited_once_with("start_failed")
