"""
Optimizer configuration, loadable from YAML.
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Invalid optimizer configuration"""


@dataclass
class OptimizerConfig:
    """
    Which fusion passes run and whether the graph is checked first.

    ``max_fused_stages`` bounds how many element functions vertical fusion
    composes into one operation; longer chains become several operations.
    """
    vertical_fusion: bool = True
    horizontal_fusion: bool = True
    validate: bool = True
    max_fused_stages: int = 64

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'OptimizerConfig':
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Optimizer config must be a mapping, got {type(data).__name__}")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown optimizer options: {', '.join(sorted(unknown))}")

        for key, value in data.items():
            if key == 'max_fused_stages':
                if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                    raise ConfigError(f"Option '{key}' must be a positive integer, got {value!r}")
            elif not isinstance(value, bool):
                raise ConfigError(f"Option '{key}' must be a boolean, got {value!r}")

        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'OptimizerConfig':
        """Load the ``optimizer`` section of a YAML file"""
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigError(f"{path}: top level must be a mapping")

        config = cls.from_dict(data.get('optimizer', {}))
        logger.info(f"Loaded optimizer config from {path}: {config}")
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
