"""Load pipeline definitions from YAML or JSON files.

A pipeline file is either a list of stages or a mapping with a ``stages``
list. Each stage is ``{name, args}``; a bare string is a stage without
arguments::

    stages:
      - name: email.triage
        args: {limit: 10}
      - name: approve
        args: {prompt: "Send replies?"}
"""

import logging
from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from .base import Pipeline

logger = logging.getLogger(__name__)


def parse_pipeline(data: Any) -> Pipeline:
    """
    Build a Pipeline from already-parsed data.

    Raises:
        ConfigurationError: If the structure is not a list of stages
    """
    if isinstance(data, dict):
        data = data.get("stages")
    if not isinstance(data, list):
        raise ConfigurationError("Pipeline definition must be a list of stages (or a mapping with 'stages')")

    specs = [{"name": entry} if isinstance(entry, str) else entry for entry in data]
    try:
        return Pipeline(specs)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid pipeline definition: {e.error_count()} error(s)") from e


def load_pipeline(path: Union[str, Path]) -> Pipeline:
    """
    Load a pipeline file. JSON is valid YAML, so one parser handles both.

    Args:
        path: Path to a .yaml/.yml/.json file

    Returns:
        Pipeline

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Pipeline file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Pipeline file {path} is not valid YAML/JSON: {e}") from e

    pipeline = parse_pipeline(data)
    logger.debug(f"Loaded {pipeline!r} from {path}")
    return pipeline
