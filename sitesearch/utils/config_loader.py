from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


PathLike = Union[str, Path]

DEFAULT_USER_AGENT = "SiteSearchBot/1.0"
DEFAULT_DATABASE_URL = "sqlite://data/sitesearch.sqlite3"
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "config.yaml"

DEFAULT_BLOCKED_EXTENSIONS = [
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".pdf", ".doc", ".docx",
    ".xls", ".xlsx", ".ppt", ".pptx", ".zip", ".rar", ".mp3", ".mp4", ".exe",
]

# YAML section -> {yaml key: AppConfig field}
_SECTION_FIELDS: Dict[str, Dict[str, str]] = {
    "crawler": {
        "user_agent": "crawler_user_agent",
        "workers": "crawler_workers",
        "request_timeout": "request_timeout",
        "store_non_html_pages": "store_non_html_pages",
        "blocked_extensions": "blocked_extensions",
        "stop_drain_timeout": "stop_drain_timeout",
    },
    "search": {
        "too_common_fraction": "too_common_fraction",
        "snippet_half_window": "snippet_half_window",
        "snippet_max_fragments": "snippet_max_fragments",
        "snippet_max_length": "snippet_max_length",
    },
    "api": {
        "host": "api_host",
        "port": "api_port",
    },
}


class SiteConfig(BaseModel):
    url: str
    name: str


class AppConfig(BaseSettings):
    sites: List[SiteConfig] = []
    database_url: str = DEFAULT_DATABASE_URL

    crawler_user_agent: str = DEFAULT_USER_AGENT
    crawler_workers: int = 8
    request_timeout: float = 10.0
    store_non_html_pages: bool = True
    blocked_extensions: List[str] = DEFAULT_BLOCKED_EXTENSIONS
    stop_drain_timeout: float = 10.0

    too_common_fraction: float = 0.6
    snippet_half_window: int = 80
    snippet_max_fragments: int = 2
    snippet_max_length: int = 320

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    log_level: str = "INFO"
    log_path: str = "logs/sitesearch.log"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def load_environment(dotenv_path: PathLike | None = None, *, override: bool = False) -> bool:
    """Load environment variables from a .env file.

    Args:
        dotenv_path: Explicit path to the .env file. If omitted, the first
            discoverable .env in the current working directory tree is used.
        override: Whether to overwrite existing environment variables.

    Returns:
        True if an env file was found and loaded, otherwise False.
    """

    path = dotenv_path
    if path is None:
        path = find_dotenv(usecwd=True)

    if not path or not Path(path).exists():
        return False

    return load_dotenv(dotenv_path=path, override=override)


def _load_yaml_config(config_path: PathLike | None = None) -> Dict[str, Any]:
    path = Path(config_path or os.getenv("SITESEARCH_CONFIG") or DEFAULT_CONFIG_PATH)
    if not path.exists():
        return {}

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _flatten_file_settings(file_data: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, value in file_data.items():
        if key in _SECTION_FIELDS:
            section = value or {}
            for yaml_key, field_name in _SECTION_FIELDS[key].items():
                if section.get(yaml_key) is not None:
                    values[field_name] = section[yaml_key]
        elif value is not None:
            values[key] = value
    return values


def load_config(config_path: PathLike | None = None) -> AppConfig:
    """Build the application config.

    Precedence: environment (including .env) -> YAML file -> defaults.
    """
    load_environment()
    file_values = _flatten_file_settings(_load_yaml_config(config_path))

    # AppConfig reads the environment itself; only hand it the file values
    # that are not already overridden there.
    overrides = {
        field: value
        for field, value in file_values.items()
        if field in AppConfig.model_fields and os.getenv(field.upper()) is None
    }
    return AppConfig(**overrides)


def get_crawler_user_agent(config: Optional[AppConfig] = None) -> str:
    """Return the configured crawler user-agent string."""
    config = config or load_config()
    return config.crawler_user_agent
