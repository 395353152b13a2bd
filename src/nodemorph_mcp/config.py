"""Configuration and logging setup for the NodeMorph MCP server."""

import logging
import os
import sys

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from .models import APIConfiguration

ENV_PREFIX = "NODEMORPH_"


def _env(name: str, default: str) -> str:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


class ServerConfig(BaseModel):
    """Server settings, read from ``NODEMORPH_*`` environment variables."""

    model_config = ConfigDict(validate_default=True)

    base_url: str = Field(default_factory=lambda: _env("BASE_URL", "http://localhost:4502"))
    username: str = Field(default_factory=lambda: _env("USERNAME", "admin"))
    password: SecretStr = Field(default_factory=lambda: SecretStr(_env("PASSWORD", "admin")))
    timeout: float = Field(default_factory=lambda: float(_env("TIMEOUT", "30")))
    query_endpoint: str = Field(default_factory=lambda: _env("QUERY_ENDPOINT", "/bin/querybuilder.json"))
    update_endpoint: str = Field(default_factory=lambda: _env("UPDATE_ENDPOINT", "/bin/nodemorph/update"))
    max_concurrency: int = Field(default_factory=lambda: int(_env("MAX_CONCURRENCY", "4")), ge=1)
    log_level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))

    def get_api_config(self) -> APIConfiguration:
        """Build the client configuration from server settings."""
        return APIConfiguration(
            base_url=self.base_url,
            username=self.username,
            password=self.password,
            timeout=self.timeout,
            query_endpoint=self.query_endpoint,
            update_endpoint=self.update_endpoint,
            max_concurrency=self.max_concurrency,
        )


def setup_logging(level: str | None = None) -> None:
    """Send log records to stderr (stdout belongs to the MCP stdio transport)."""
    root = logging.getLogger()
    root.setLevel((level or _env("LOG_LEVEL", "INFO")).upper())

    has_console = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in root.handlers
    )
    if not has_console:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
