import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from utils.logger import get_logger

logger = get_logger(__name__)

CONFIG_TTL_SECONDS = 30
CONFIG_ENV_VAR = "WEB_TOOLS_CONFIG"
API_KEY_ENV_VAR = "EXA_API_KEY"
DEFAULT_CONFIG_PATH = Path.home() / ".web-tools" / "config.json"

TOOL_NAMES = ("web_search", "code_search", "fetch_content", "get_search_content")

# Load environment variables from .env file if it exists
_env_path = Path(__file__).parent.parent / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)


@dataclass(frozen=True)
class GitHubConfig:
    max_repo_size_mb: float = 350
    clone_timeout_seconds: float = 30
    clone_path: str = "/tmp/web-tools-github-repos"


@dataclass(frozen=True)
class ToolToggles:
    web_search: bool = True
    code_search: bool = True
    fetch_content: bool = True
    get_search_content: bool = True

    def enabled(self) -> list[str]:
        return [name for name in TOOL_NAMES if getattr(self, name)]


@dataclass(frozen=True)
class WebToolsConfig:
    """Resolved configuration for the web tools."""

    exa_api_key: str | None = None
    github: GitHubConfig = field(default_factory=GitHubConfig)
    tools: ToolToggles = field(default_factory=ToolToggles)


def get_config_path() -> Path:
    """Config file location: $WEB_TOOLS_CONFIG or ~/.web-tools/config.json."""
    override = os.getenv(CONFIG_ENV_VAR)
    return Path(override) if override else DEFAULT_CONFIG_PATH


def _load_config_file() -> dict[str, Any]:
    path = get_config_path()
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        logger.warning(
            f"Ignoring unreadable config file: {e}",
            extra={"extra_fields": {"config_path": str(path)}},
        )
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _section(document: dict[str, Any], key: str) -> dict[str, Any]:
    value = document.get(key)
    return value if isinstance(value, dict) else {}


def build_config() -> WebToolsConfig:
    """
    Build configuration from the JSON document and the environment.

    Wrong-typed values fall back to defaults. A non-empty EXA_API_KEY
    environment variable takes priority over the file's exaApiKey.
    """
    document = _load_config_file()
    defaults = GitHubConfig()

    github_doc = _section(document, "github")
    github = GitHubConfig(
        max_repo_size_mb=(
            github_doc["maxRepoSizeMB"]
            if _is_number(github_doc.get("maxRepoSizeMB"))
            else defaults.max_repo_size_mb
        ),
        clone_timeout_seconds=(
            github_doc["cloneTimeoutSeconds"]
            if _is_number(github_doc.get("cloneTimeoutSeconds"))
            else defaults.clone_timeout_seconds
        ),
        clone_path=(
            github_doc["clonePath"]
            if isinstance(github_doc.get("clonePath"), str)
            else defaults.clone_path
        ),
    )

    tools_doc = _section(document, "tools")
    toggles = {
        name: tools_doc[name] if isinstance(tools_doc.get(name), bool) else True
        for name in TOOL_NAMES
    }
    # get_search_content has nothing to read when every producer is off
    if not (toggles["web_search"] or toggles["code_search"] or toggles["fetch_content"]):
        toggles["get_search_content"] = False

    env_key = os.getenv(API_KEY_ENV_VAR)
    if env_key:
        api_key = env_key
    elif isinstance(document.get("exaApiKey"), str):
        api_key = document["exaApiKey"]
    else:
        api_key = None

    return WebToolsConfig(exa_api_key=api_key, github=github, tools=ToolToggles(**toggles))


class ConfigLoader:
    """
    Time-cached configuration source.

    External edits to the config file take effect once the cached copy is
    older than ttl_seconds, without restarting the host.
    """

    def __init__(self, ttl_seconds: float = CONFIG_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._cached: WebToolsConfig | None = None
        self._loaded_at = 0.0

    def get(self) -> WebToolsConfig:
        now = time.monotonic()
        if self._cached is not None and now - self._loaded_at < self.ttl_seconds:
            return self._cached
        self._cached = build_config()
        self._loaded_at = now
        return self._cached

    def reset(self) -> None:
        self._cached = None
        self._loaded_at = 0.0


# Module-level loader used by get_config()/reset_config_cache()
_loader = ConfigLoader()


def get_config() -> WebToolsConfig:
    return _loader.get()


def reset_config_cache() -> None:
    _loader.reset()
