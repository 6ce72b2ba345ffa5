"""Tests for the uvicorn entry point."""

from unittest.mock import patch

from src.config import settings
from src.main import run


class TestRun:
    def test_serves_app_on_configured_address(self):
        with patch("uvicorn.run") as serve:
            run()

        serve.assert_called_once()
        assert serve.call_args.args == ("src.main:app",)
        assert serve.call_args.kwargs["host"] == settings.host
        assert serve.call_args.kwargs["port"] == settings.port
        assert serve.call_args.kwargs["access_log"] is False
