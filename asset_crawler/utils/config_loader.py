import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = "AssetCrawler/1.0"
DEFAULT_CONFIG_FILE = Path(__file__).resolve().parents[2] / "config" / "config.yaml"

PathLike = Union[str, Path]


class Config(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 3000
    log_dir: str = "/var/log/crawler"
    log_level: str = "INFO"
    save_path: str = "/var/lib/crawler/downloads"
    job_retention: int = 1000

    # engine defaults, overridable per job
    timeout: int = 30_000
    max_concurrent: int = 5
    rate_limit: int = 100
    rate_interval: float = 1.0
    max_retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    max_response_bytes: int = 50_000_000
    crawler_user_agent: str = DEFAULT_USER_AGENT

    model_config = SettingsConfigDict(extra="ignore")


def load_environment(dotenv_path: Optional[PathLike] = None, *, override: bool = False) -> bool:
    """Load environment variables from a .env file.

    Args:
        dotenv_path: Explicit path to the .env file. If omitted, the first
            discoverable .env in the current working directory tree is used.
        override: Whether to overwrite variables already set in the process.

    Returns:
        True if an env file was found and loaded, otherwise False.
    """
    path = dotenv_path
    if path is None:
        path = find_dotenv(usecwd=True)

    if not path or not os.path.exists(path):
        return False

    return load_dotenv(dotenv_path=path, override=override)


def _load_yaml_config(config_path: Optional[PathLike] = None) -> Dict[str, Any]:
    path = config_path or os.getenv("CRAWLER_CONFIG_FILE") or DEFAULT_CONFIG_FILE
    if not os.path.exists(path):
        return {}

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    return data.get("crawler") or {}


def load_config(config_path: Optional[PathLike] = None) -> Config:
    """Build the service config.

    Precedence: environment (including .env) -> YAML ``crawler:`` section -> defaults.
    """
    load_environment()
    file_settings = _load_yaml_config(config_path)

    # pydantic-settings lets init kwargs win over env, so only pass file values
    # the environment does not already define.
    from_file = {
        key: value
        for key, value in file_settings.items()
        if key in Config.model_fields and key.upper() not in os.environ
    }
    return Config(**from_file)

