"""Deploy configuration: YAML file loading and DeployParams resolution.

Precedence is CLI flag > config file > built-in default.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime

import yaml

from aiquick.provisioning.linode import DEFAULT_API_URL, DEFAULT_IMAGE
from aiquick.provisioning.types import validate_label
from aiquick.readiness.health import DEFAULT_SERVICES
from aiquick.readiness.stream import DEFAULT_RELAY_URL, DEFAULT_TERMINAL_MARKERS

logger = logging.getLogger(__name__)

PROJECT_NAME = "ai-quickstart"
TOKEN_ENV_VARS = ("LINODE_TOKEN", "LINODE_CLI_TOKEN")


@dataclass
class Timeouts:
    """Per-stage wall-clock budgets in seconds. No global deadline exists."""

    running: float = 180
    first_event: float = 300
    reachable: float = 120
    http: float = 30
    model: float = 600


@dataclass
class Intervals:
    running: float = 5
    reachable: float = 2
    http: float = 2
    model: float = 2


@dataclass
class DeployParams:
    """All parameters needed for a single deploy run."""

    token: str
    region: str
    instance_type: str
    label: str
    ssh_key: str  # path to SSH private key; public key is ssh_key + ".pub"
    image: str = DEFAULT_IMAGE
    root_pass: str = ""
    user_data: str = ""  # base64, forwarded untouched
    api_url: str = DEFAULT_API_URL
    relay_url: str = DEFAULT_RELAY_URL
    services: tuple = DEFAULT_SERVICES
    health_port: int = 8080
    health_path: str = "/health"
    model_port: int = 8000
    model_path: str = "/v1/models"
    model_id: str = "Qwen/Qwen3-14B-FP8"
    timeouts: Timeouts = field(default_factory=Timeouts)
    intervals: Intervals = field(default_factory=Intervals)
    reboot_grace: float = 5
    terminal_markers: tuple = DEFAULT_TERMINAL_MARKERS
    max_stream_reconnects: int = 1
    dry_run: bool = False

    @property
    def public_key_path(self) -> str:
        return f"{self.ssh_key}.pub"


def load_config(config_path: str) -> dict:
    """Load configuration from YAML file. An empty file yields an empty dict."""
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        logger.error(f"Error: Config file '{config_path}' not found.")
        sys.exit(1)
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML config: {e}")
        sys.exit(1)
    if config is None:
        return {}
    if not isinstance(config, dict):
        logger.error(f"Error: Config file '{config_path}' must contain a mapping.")
        sys.exit(1)
    return config


def deep_merge(base, override):
    """Recursive dict merge. Override wins for scalars; None never overrides."""
    result = base.copy()
    for key, value in override.items():
        if value is None:
            continue
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def default_label(now=None):
    """Label such as ``ai-quickstart-2501011200``."""
    now = now or datetime.now()
    return f"{PROJECT_NAME}-{now:%y%m%d%H%M}"


def resolve_token(cli_token=None):
    """Return the API token from the CLI flag or the environment, or None."""
    if cli_token:
        return cli_token
    for var in TOKEN_ENV_VARS:
        value = os.environ.get(var)
        if value:
            return value
    return None


def _build_dataclass(cls, data, section):
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {', '.join(unknown)}")
    return cls(**data)


def _section(config, name):
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' must be a mapping")
    return value


def build_params(config: dict, token: str, dry_run=False) -> DeployParams:
    """Validate a merged config dict and build DeployParams.

    Raises:
        ValueError: a required value is missing or invalid.
    """
    for key in ("region", "type", "ssh_key"):
        if not config.get(key):
            raise ValueError(f"Missing required setting '{key}'")

    label = config.get("label") or default_label()
    if not validate_label(label):
        raise ValueError(
            f"Invalid label '{label}': use 3-64 letters, digits, '-', '_' or '.', "
            "starting and ending with a letter or digit, without doubled separators"
        )

    health = _section(config, "health")
    model = _section(config, "model")
    markers = config.get("terminal_markers") or DEFAULT_TERMINAL_MARKERS
    services = config.get("services") or DEFAULT_SERVICES

    return DeployParams(
        token=token,
        region=config["region"],
        instance_type=config["type"],
        label=label,
        ssh_key=os.path.expanduser(config["ssh_key"]),
        image=config.get("image") or DEFAULT_IMAGE,
        root_pass=config.get("root_pass") or "",
        user_data=config.get("user_data_b64") or "",
        api_url=config.get("api_url") or DEFAULT_API_URL,
        relay_url=config.get("relay_url") or DEFAULT_RELAY_URL,
        services=tuple(services),
        health_port=int(health.get("port", 8080)),
        health_path=health.get("path", "/health"),
        model_port=int(model.get("port", 8000)),
        model_path=model.get("path", "/v1/models"),
        model_id=model.get("id", "Qwen/Qwen3-14B-FP8"),
        timeouts=_build_dataclass(Timeouts, _section(config, "timeouts"), "timeouts"),
        intervals=_build_dataclass(Intervals, _section(config, "intervals"), "intervals"),
        reboot_grace=float(config.get("reboot_grace", 5)),
        terminal_markers=tuple(markers),
        max_stream_reconnects=int(config.get("max_stream_reconnects", 1)),
        dry_run=dry_run,
    )
