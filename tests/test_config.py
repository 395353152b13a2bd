"""
Tests for environment configuration
"""
import logging

import pytest

from nodemorph_mcp.config import ServerConfig, setup_logging


class TestServerConfig:
    def test_defaults(self, monkeypatch):
        for name in ("BASE_URL", "USERNAME", "PASSWORD", "TIMEOUT", "MAX_CONCURRENCY"):
            monkeypatch.delenv(f"NODEMORPH_{name}", raising=False)

        api = ServerConfig().get_api_config()

        assert api.base_url == "http://localhost:4502"
        assert api.query_endpoint == "/bin/querybuilder.json"
        assert api.max_concurrency == 4

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("NODEMORPH_BASE_URL", "https://author.example.com/")
        monkeypatch.setenv("NODEMORPH_PASSWORD", "s3cret")
        monkeypatch.setenv("NODEMORPH_TIMEOUT", "5")
        monkeypatch.setenv("NODEMORPH_MAX_CONCURRENCY", "8")

        api = ServerConfig().get_api_config()

        assert api.base_url == "https://author.example.com"
        assert api.timeout == 5.0
        assert api.max_concurrency == 8
        assert api.password.get_secret_value() == "s3cret"
        assert "s3cret" not in repr(api)

    def test_concurrency_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("NODEMORPH_MAX_CONCURRENCY", "0")

        with pytest.raises(ValueError):
            ServerConfig()


def test_setup_logging_quiets_httpx():
    setup_logging("debug")

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
