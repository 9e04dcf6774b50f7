"""
Custom YAML config: MCP servers with their webhooks, and scheduled jobs.

Strings are resolved against the environment (``${NAME}``) before
validation. ``${{ ... }}`` placeholders in prompts are left for the
placeholder evaluator.
"""

from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union
from pathlib import Path
import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .env import resolve_config_deep

logger = structlog.get_logger(__name__)


class ConfigError(ValueError):
    """Raised when the custom config cannot be read or validated"""


class GithubAuth(BaseModel):
    type: Literal["github"]
    secret: str
    algorithm: Literal["sha1", "sha256"] = "sha256"
    signature_header: Optional[str] = None


class HeaderAuth(BaseModel):
    type: Literal["header"]
    secret: str
    header: str = "authorization"


class MicrosoftAuth(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["microsoft"]
    client_state: str = Field(alias="clientState")


WebhookAuth = Annotated[Union[GithubAuth, HeaderAuth, MicrosoftAuth], Field(discriminator="type")]


class WebhookConfig(BaseModel):
    """One webhook hook of an MCP server"""
    agent_id: str
    user: str
    prompt: str
    auth: Optional[WebhookAuth] = None


class JobConfig(BaseModel):
    """A cron-scheduled agent prompt"""
    user: str
    agent_id: str
    prompt: Optional[str] = None
    schedule: str
    timezone: str = "UTC"
    enabled: bool = True


class MCPServerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[int] = None
    init_timeout: Optional[int] = Field(None, alias="initTimeout")
    webhooks: Dict[str, WebhookConfig] = Field(default_factory=dict)


class CustomConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mcp_servers: Dict[str, MCPServerConfig] = Field(default_factory=dict, alias="mcpServers")
    jobs: Dict[str, JobConfig] = Field(default_factory=dict)

    def get_webhook(self, server: str, hook: str) -> Optional[WebhookConfig]:
        """Webhook config for a URL-based server, None when not configured"""

        server_config = self.mcp_servers.get(server)
        if server_config is None or not server_config.url:
            return None
        return server_config.webhooks.get(hook)

    def enabled_jobs(self) -> Dict[str, JobConfig]:
        return {name: job for name, job in self.jobs.items() if job.enabled}


def parse_custom_config(data: Optional[Mapping[str, Any]], environ: Optional[Mapping[str, str]] = None) -> CustomConfig:
    """Validate an already loaded config mapping after env substitution"""

    try:
        return CustomConfig.model_validate(resolve_config_deep(dict(data or {}), environ))
    except ValidationError as e:
        raise ConfigError(f"Invalid custom config: {e}") from e


def load_custom_config(path: Union[str, Path], environ: Optional[Mapping[str, str]] = None) -> CustomConfig:
    """Read, env-resolve and validate a YAML custom config file"""

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read custom config {path}: {e}") from e

    if not isinstance(data, Mapping):
        raise ConfigError(f"Custom config {path} must be a mapping")

    config = parse_custom_config(data, environ)
    logger.info("Loaded custom config", path=str(path),
               servers=len(config.mcp_servers), jobs=len(config.jobs))
    return config
