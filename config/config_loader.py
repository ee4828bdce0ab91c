"""Load settings.yaml into typed dataclasses. Resolves API credentials from the environment."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ApiConfig:
    base_url: str
    api_key_env: str
    http_timeout_sec: int
    api_key: str = ""


@dataclass
class PollingConfig:
    timeout_sec: float
    start_timeout_sec: float


@dataclass
class StreamDefaults:
    topology: str
    model_group: str
    rounds: int
    max_rounds: int
    short_responses: bool
    context_strategy: str


@dataclass
class OutputConfig:
    dir: Path


@dataclass
class AppConfig:
    api: ApiConfig
    polling: PollingConfig
    stream: StreamDefaults
    output: OutputConfig


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    ``WISEPANEL_API_URL`` overrides ``api.base_url``. A missing API key is
    logged, not raised; the client refuses to start without one.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    api_raw = raw["api"]
    api_key_env = str(api_raw["api_key_env"])
    api_key = os.environ.get(api_key_env, "").strip()
    if not api_key:
        logger.info("No API key found; set %s in .env (generate one at wisepanel.ai/settings)", api_key_env)

    base_url = os.environ.get("WISEPANEL_API_URL", "").strip() or str(api_raw["base_url"])
    api = ApiConfig(
        base_url=base_url.rstrip("/"),
        api_key_env=api_key_env,
        http_timeout_sec=int(api_raw["http_timeout_sec"]),
        api_key=api_key,
    )

    polling_raw = raw["polling"]
    polling = PollingConfig(
        timeout_sec=float(polling_raw["timeout_sec"]),
        start_timeout_sec=float(polling_raw["start_timeout_sec"]),
    )

    stream_raw = raw["stream"]
    stream = StreamDefaults(
        topology=str(stream_raw["topology"]),
        model_group=str(stream_raw["model_group"]),
        rounds=int(stream_raw["rounds"]),
        max_rounds=int(stream_raw["max_rounds"]),
        short_responses=bool(stream_raw.get("short_responses", False)),
        context_strategy=str(stream_raw.get("context_strategy", "moderate")),
    )

    output = OutputConfig(dir=Path(raw.get("output", {}).get("dir", "./output")))

    return AppConfig(api=api, polling=polling, stream=stream, output=output)
