import logging
import re
from typing import Any

import yaml
from pydantic import ValidationError

from models import InboundRequest

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_key(key: Any) -> str:
    """``"Target Length"``, ``"targetLength"`` and ``"target-length"`` -> ``"target_length"``."""
    text = _CAMEL_BOUNDARY_RE.sub("_", str(key).strip())
    return re.sub(r"[\s-]+", "_", text).lower()


def normalize_keys_recursive(data: Any) -> Any:
    """
    Recursively normalizes dictionary keys to snake_case so briefs can be
    written with human-readable or camelCase keys.
    """
    if isinstance(data, dict):
        return {normalize_key(key): normalize_keys_recursive(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [normalize_keys_recursive(item) for item in data]
    else:
        return data


def load_yaml_file(filepath: str, normalize_keys: bool = True) -> dict[str, Any] | None:
    """
    Loads and parses a YAML file.

    Args:
        filepath: Path to the YAML file.
        normalize_keys: Whether to recursively normalize dictionary keys
                        to snake_case. Defaults to True.

    Returns:
        A dictionary representing the YAML content, or None if an error occurs.
    """
    if not filepath.endswith((".yaml", ".yml")):
        logger.error(f"File specified is not a YAML file: {filepath}")
        return None
    try:
        with open(filepath, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"YAML file '{filepath}' not found.")
        return None
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML file {filepath}: {e}", exc_info=True)
        return None

    if content is None:  # Empty file
        return {}
    if not isinstance(content, dict):
        logger.error(
            f"YAML file {filepath} must have a dictionary as its root element. Parsed type: {type(content)}"
        )
        return None
    if normalize_keys:
        return normalize_keys_recursive(content)
    return content


def load_brief(filepath: str, **overrides: Any) -> InboundRequest | None:
    """Build an :class:`InboundRequest` from a YAML brief.

    Non-``None`` ``overrides`` (typically command-line flags) win over the file.
    """
    content = load_yaml_file(filepath)
    if content is None:
        return None
    content.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return InboundRequest.model_validate(content)
    except ValidationError as e:
        logger.error(f"Brief {filepath} is not a valid request: {e}")
        return None
