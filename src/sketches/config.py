import logging
import os

import yaml

from sketches.errors import InvalidConfiguration

log = logging.getLogger(__name__)

DEFAULTS = {
    "register_count": 1024,
    "strict_decode": False,
    "log_level": "WARNING",
}


def load_config(path: str = None) -> dict:
    """Load sketch settings from a YAML file, overlaid on DEFAULTS.

    Args:
    path: YAML file to read. None or a missing file yields the defaults.
    Returns:
    A new dict holding every key of DEFAULTS
    """
    cfg = dict(DEFAULTS)
    if path is None or not os.path.exists(path):
        return cfg

    with open(path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f)

    if loaded is None:
        return cfg
    if not isinstance(loaded, dict):
        raise InvalidConfiguration(
            f"config {path} must be a mapping, got {type(loaded).__name__}"
        )

    unknown = sorted(set(loaded) - set(DEFAULTS))
    if unknown:
        raise InvalidConfiguration(f"unknown config keys in {path}: {unknown}")

    cfg.update(loaded)
    log.debug("loaded sketch config from %s: %s", path, cfg)
    return cfg


def configure_logging(cfg: dict = None):
    """Apply the configured log level to the sketch loggers."""
    cfg = cfg or DEFAULTS
    level = str(cfg.get("log_level", DEFAULTS["log_level"])).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise InvalidConfiguration(f"unknown log level {level!r}")
    for name in ("sketches", "analytics"):
        logging.getLogger(name).setLevel(level)
