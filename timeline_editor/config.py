import os
import json
import logging
from pathlib import Path

from colorlog import ColoredFormatter
from dotenv import load_dotenv

# --- CONSTANTS ---
APP_NAME = "TimelineEditor"
VERSION = "1.0.0"
ENV_PREFIX = "TIMELINE_EDITOR_"
IS_WINDOWS = os.name == 'nt'

# --- PATHS ---
# Use %APPDATA% on Windows, ~/.config on Linux/Mac
if os.environ.get(f"{ENV_PREFIX}CONFIG_DIR"):
    CONFIG_DIR = os.environ[f"{ENV_PREFIX}CONFIG_DIR"]
elif IS_WINDOWS:
    CONFIG_DIR = os.path.join(os.environ.get('APPDATA', str(Path.home())), APP_NAME)
else:
    CONFIG_DIR = os.path.join(str(Path.home()), ".config", APP_NAME)

SETTINGS_FILE = os.path.join(CONFIG_DIR, "settings.json")

# --- DEFAULTS ---
DEFAULTS = {
    "history_limit": 50,
    "resolution": "1080p",
    "ffmpeg": None,
    "ffprobe": None,
}

logger = logging.getLogger(APP_NAME)


# --- LOGGING ---
def setup_logging(level=logging.INFO, log_file=None):
    """
    Attach a colored console handler (and optionally a log file) to the
    application logger. Safe to call more than once.
    """
    formatter = ColoredFormatter(
        "%(log_color)s%(levelname)-8s%(reset)s %(blue)s%(message)s",
        datefmt=None,
        reset=True,
        log_colors={'DEBUG': 'cyan', 'INFO': 'green', 'WARNING': 'yellow', 'ERROR': 'red'}
    )
    if not any(getattr(h, "_timeline_editor", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        handler._timeline_editor = True
        logger.addHandler(handler)

        if log_file:
            file_handler = logging.FileHandler(log_file, mode='w')
            file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
            file_handler._timeline_editor = True
            logger.addHandler(file_handler)

    logger.setLevel(level)
    return logger


def load_environment():
    """Load a .env file from the working directory, if there is one."""
    return load_dotenv()


# --- SETTINGS MANAGER ---
def load_settings():
    """Loads settings from JSON file."""
    if not os.path.exists(SETTINGS_FILE):
        return {}
    try:
        with open(SETTINGS_FILE, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load settings: {e}")
        return {}


def save_settings(key, value):
    """Saves a single setting key-value pair."""
    os.makedirs(os.path.dirname(SETTINGS_FILE) or ".", exist_ok=True)

    settings = load_settings()
    settings[key] = value

    with open(SETTINGS_FILE, 'w', encoding='utf-8') as f:
        json.dump(settings, f, indent=4)
    logger.info(f"Saved setting: {key} = {value}")


def get_setting(key, default=None):
    """
    Retrieves a setting value.

    Lookup order: TIMELINE_EDITOR_<KEY> environment variable, the
    settings file, the built-in default.
    """
    env_value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
    if env_value:
        return env_value

    settings = load_settings()
    if key in settings:
        return settings[key]

    if default is not None:
        return default
    return DEFAULTS.get(key)


def get_history_limit():
    """History size from settings, falling back to the default on bad values."""
    value = get_setting("history_limit")
    try:
        limit = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid history_limit setting: {value!r}")
        return DEFAULTS["history_limit"]
    return limit if limit > 0 else DEFAULTS["history_limit"]
