# MIT License
# Copyright (c) 2025 Hashborn

"""Configuration loader from JSON."""

import json
import os
from typing import Any, Dict, Optional

from .params import EngineConfig, NETWORKS, CURRENT_NETWORK


def load_config(path: Optional[str] = None, network: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration.

    A JSON file overrides the fields of the selected preset.

    Args:
        path: Path to a JSON file (optional)
        network: Preset name (defaults to CURRENT_NETWORK)

    Returns:
        EngineConfig object
    """
    base = NETWORKS[network] if network else CURRENT_NETWORK
    if path is None or not os.path.exists(path):
        return base

    with open(path, "r") as f:
        data = json.load(f)

    return config_from_dict(data, base)


def config_from_dict(data: Dict[str, Any], base: Optional[EngineConfig] = None) -> EngineConfig:
    merged = (base or CURRENT_NETWORK).model_dump()
    merged.update(data)
    return EngineConfig.model_validate(merged)
