from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:3]]

_override = os.environ.get("PDF_TOOLS_CONFIG")
if _override:
    _CANDIDATE_CONFIG_PATHS.insert(0, Path(_override))

CONFIG_PATH = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
if CONFIG_PATH is None:  # pragma: no cover - fail fast in broken installs
    raise FileNotFoundError("config.yaml could not be located; set PDF_TOOLS_CONFIG or reinstall the package.")


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    # Environment interpolations resolve lazily, so .env must be loaded first.
    load_dotenv()
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = True) -> Dict[str, Any]:
    return OmegaConf.to_container(_load_default_config(), resolve=resolve)  # type: ignore[return-value]


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """Merge ``overrides`` onto the packaged defaults.

    The base is put in struct mode so that a misspelled override key fails
    loudly instead of being silently ignored.
    """
    base = OmegaConf.create(get_default_config_container(resolve=True))
    OmegaConf.set_struct(base, True)
    merged = OmegaConf.merge(base, OmegaConf.create(overrides or {}))
    return DictConfig(merged)


@lru_cache(maxsize=1)
def get_settings() -> DictConfig:
    return load_settings()
