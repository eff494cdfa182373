"""
Tests for the command line entry point.

Run with: pytest tests/test_main.py -v
"""
import json
from unittest.mock import AsyncMock, patch

import pytest

from skrapr.__main__ import main, run
from skrapr.core.config import SkraprConfig
from skrapr.core.errors import CDPConnectionError
from skrapr.core.models import ChromeSessionInfo
from skrapr.worker import WorkerResult
from tests.test_worker import FakeDevTools

PAGE = ChromeSessionInfo(
    id="P1",
    type="page",
    title="Example",
    url="https://example.com",
    web_socket_debugger_url="ws://localhost:9222/devtools/page/P1",
)


@pytest.fixture
def definition_file(tmp_path):
    path = tmp_path / "definition.json"
    path.write_text(json.dumps({
        "name": "cli",
        "start_urls": ["https://example.com/start"],
        "rules": [{"type": "url", "pattern": "/start", "tasks": [{"type": "delay", "seconds": 0}]}],
    }))
    return path


class TestRun:
    """Tests for the run coroutine."""

    @pytest.mark.asyncio
    async def test_runs_definition_to_completion(self, definition_file):
        devtools = FakeDevTools()
        config = SkraprConfig(definition_path=str(definition_file))

        with patch("skrapr.__main__.get_chrome_sessions", AsyncMock(return_value=[PAGE])) as sessions, \
                patch("skrapr.__main__.SkraprDevTools.connect", AsyncMock(return_value=devtools)):
            result = await run(config)

        sessions.assert_awaited_once_with("localhost", 9222)
        assert devtools.navigated == ["https://example.com/start"]
        assert result.tasks_executed == 2
        assert devtools.disposed

    @pytest.mark.asyncio
    async def test_attach_continues_from_current_page(self, definition_file):
        devtools = FakeDevTools(url="https://example.com/start?page=2")
        config = SkraprConfig(definition_path=str(definition_file), attach=True)

        with patch("skrapr.__main__.get_chrome_sessions", AsyncMock(return_value=[PAGE])), \
                patch("skrapr.__main__.SkraprDevTools.connect", AsyncMock(return_value=devtools)):
            await run(config)

        assert devtools.navigated == ["https://example.com/start?page=2"]


class TestMain:
    """Tests for argument handling and exit codes."""

    def test_missing_definition_exits_with_error(self, tmp_path):
        assert main([str(tmp_path / "missing.json")]) == 1

    def test_unreachable_chrome_exits_with_error(self, definition_file):
        failing = AsyncMock(side_effect=CDPConnectionError("Failed to connect to Chrome at localhost:9222"))
        with patch("skrapr.__main__.get_chrome_sessions", failing):
            assert main([str(definition_file)]) == 1

    def test_success_passes_arguments(self, definition_file):
        with patch("skrapr.__main__.run", AsyncMock(return_value=WorkerResult(tasks_executed=1))) as mock_run:
            code = main([str(definition_file), "--host", "chrome", "--port", "9333", "--attach"])

        assert code == 0
        config = mock_run.await_args.args[0]
        assert config.definition_path == str(definition_file)
        assert (config.host, config.port, config.attach) == ("chrome", 9333, True)
