"""
Run configuration loading.

Configuration comes from ``epicpilot.json`` at the repository root plus
explicit overrides (typically CLI options); the merged record is validated
against ``config.schema.json`` and frozen into a PipelineConfig.
"""

import json
import logging
from pathlib import Path
from typing import Any

from epicpilot.domain.models import PipelineConfig
from epicpilot.schemas import validate_config

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "epicpilot.json"


def load_config(path: str | Path | None = None, **overrides: Any) -> PipelineConfig:
    """
    Build the run configuration.

    Args:
        path: Explicit config file. If None, ``epicpilot.json`` in the
            repository root is used when present.
        **overrides: Field values taking precedence over the file; None
            values are ignored.

    Returns:
        The validated PipelineConfig

    Raises:
        FileNotFoundError: If an explicit path does not exist
        ValueError: If the file is not a JSON object
        jsonschema.ValidationError: If the merged configuration is invalid
    """
    overrides = {key: value for key, value in overrides.items() if value is not None}

    if path is None:
        candidate = Path(overrides.get("repo_root", ".")) / CONFIG_FILENAME
        config_path = candidate if candidate.is_file() else None
    else:
        config_path = Path(path)

    data: dict[str, Any] = {}
    if config_path is not None:
        with open(config_path, encoding="utf-8") as f:
            loaded = json.load(f)
        if not isinstance(loaded, dict):
            raise ValueError(f"{config_path}: configuration must be a JSON object")
        data.update(loaded)
        logger.debug("Loaded configuration from %s", config_path)

    data.update(overrides)
    if "agent_command" in data:
        data["agent_command"] = list(data["agent_command"])
    validate_config(data)

    if "agent_command" in data:
        data["agent_command"] = tuple(data["agent_command"])
    return PipelineConfig(**data)
