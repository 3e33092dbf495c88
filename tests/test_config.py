import logging

from pyragraph import config
from pyragraph.core.logger import LOGGER_NAME


def test_settings_are_read_from_environment(monkeypatch):
    monkeypatch.setenv("PYRAGRAPH_LOG_LEVEL", "debug")
    monkeypatch.setenv("PYRAGRAPH_RANDOM_SEED", "11")
    monkeypatch.setenv("PYRAGRAPH_WINOGRAD_CACHE", "off")
    monkeypatch.setattr(config, "_settings", None)

    settings = config.get_settings()
    assert settings == config.Settings(log_level="DEBUG", random_seed=11, winograd_cache=False)
    assert logging.getLogger(LOGGER_NAME).level == logging.DEBUG


def test_overrides_keep_the_other_fields():
    settings = config.set_settings(config.Settings(random_seed=3), log_level="ERROR")
    assert settings.random_seed == 3
    assert config.get_settings() is settings
    assert logging.getLogger(LOGGER_NAME).level == logging.ERROR
