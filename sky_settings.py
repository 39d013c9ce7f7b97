import json
import logging
import sys
from dataclasses import dataclass

# --- LOG LEVELS ---
# The converter speaks five severities. "trace" is plain DEBUG and "notice"
# sits between INFO and WARNING.
NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")

LOG_LEVELS = {
    'trace':   logging.DEBUG,
    'info':    logging.INFO,
    'notice':  NOTICE,
    'warning': logging.WARNING,
    'error':   logging.ERROR,
}
# --- END LOG LEVELS ---

# Keys understood in the JSON config file, mapped to ConverterSettings fields
CONFIG_KEYS = {
    'fsbTransparent': ('transparent', bool),
    'autoReconvert':  ('auto_reconvert', bool),
    'log':            ('log_level', str),
}

logger = logging.getLogger(__name__)


@dataclass
class ConverterSettings:
    """Flags consumed by every conversion step."""
    transparent: bool = True
    auto_reconvert: bool = False
    log_level: str = 'info'


def load_settings(config_path=None, **overrides):
    """
    Builds ConverterSettings from an optional JSON config file, then applies
    keyword overrides (None values are ignored so argparse defaults fall through).
    """
    settings = ConverterSettings()

    if config_path is not None:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a JSON object")

        for key, value in data.items():
            if key not in CONFIG_KEYS:
                logger.warning("FSB: Unknown config key '%s' in %s, ignoring", key, config_path)
                continue
            field_name, expected_type = CONFIG_KEYS[key]
            if not isinstance(value, expected_type):
                raise ValueError(
                    f"Config key '{key}' must be of type {expected_type.__name__}, got {value!r}"
                )
            setattr(settings, field_name, value)

    for field_name, value in overrides.items():
        if value is not None:
            setattr(settings, field_name, value)

    if settings.log_level not in LOG_LEVELS:
        raise ValueError(
            f"Unknown log level '{settings.log_level}'. Choose one of: {', '.join(LOG_LEVELS)}"
        )
    return settings


def configure_logging(level_name='info', stream=None):
    """Installs a single console handler on the root logger at the requested verbosity."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(LOG_LEVELS[level_name])
