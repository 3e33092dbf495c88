import os
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from pyragraph.core.logger import get_logger


@dataclass(frozen=True)
class Settings:
    log_level: str = "WARNING"
    random_seed: Optional[int] = None
    winograd_cache: bool = True

    @classmethod
    def from_env(cls) -> 'Settings':
        seed = os.getenv("PYRAGRAPH_RANDOM_SEED")
        cache = os.getenv("PYRAGRAPH_WINOGRAD_CACHE", "1").strip().lower()
        return cls(
            log_level=os.getenv("PYRAGRAPH_LOG_LEVEL", "WARNING").upper(),
            random_seed=int(seed) if seed else None,
            winograd_cache=cache not in ("0", "false", "no", "off"),
        )

    def make_random_generator(self) -> np.random.Generator:
        return np.random.default_rng(self.random_seed)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        get_logger(_settings.log_level)
    return _settings


def set_settings(settings: Optional[Settings] = None, **overrides) -> Settings:
    """Replace the active settings, optionally overriding single fields."""
    global _settings
    base = settings if settings is not None else get_settings()
    _settings = replace(base, **overrides) if overrides else base
    get_logger(_settings.log_level)
    return _settings
