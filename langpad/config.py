# langpad/config.py
import logging
import logging.handlers
import os
import sys
import tempfile
from typing import Any, Dict, List, Optional, Tuple

import chardet
import toml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "playground": {
        "update_delay_ms": 150,
        "handshake_timeout": 0,   # seconds, 0 = wait forever
        "dispose_timeout": 0,     # seconds, 0 = wait forever
        "render_timeout": 10,
        "share_base_url": "https://langium.org/playground",
    },
    "worker": {
        "python": "",
        "module": "langpad.language_server",
    },
    "logging": {
        "file_level": "DEBUG",
        "console_level": "WARNING",
        "log_to_console": True,
        "separate_error_log": False,
    },
}


def deep_merge(base: Dict[Any, Any], override: Dict[Any, Any]) -> Dict[Any, Any]:
    """
    Recursively merges ``override`` into ``base`` and returns a new dictionary.

    Nested dictionaries are merged key by key; any other value in
    ``override`` replaces the one in ``base``. Neither argument is modified.

    Example:
        >>> deep_merge({'a': 1, 'b': {'x': 10}}, {'b': {'y': 2}})
        {'a': 1, 'b': {'x': 10, 'y': 2}}
    """
    result = dict(base)
    for key, override_value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(override_value, dict):
            result[key] = deep_merge(base_value, override_value)
        else:
            result[key] = override_value
    return result


def load_config(path: str = "config.toml") -> Dict[str, Any]:
    """
    Loads ``config.toml`` on top of the built-in defaults.

    A missing, unreadable or malformed file is logged and the defaults are
    used instead, so this function never raises.
    """
    user_config: Dict[str, Any] = {}
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as fh:
                user_config = toml.loads(fh.read())
            logger.debug("Loaded user config from %s", path)
        except FileNotFoundError:
            logger.warning("Config file %s vanished, using defaults.", path)
        except toml.TomlDecodeError as exc:
            logger.error("TOML parse error in %s: %s, using defaults.", path, exc)
        except OSError as exc:
            logger.error("Unexpected error reading %s: %s, using defaults.", path, exc)
    else:
        logger.debug("Config file %s not found, using defaults.", path)

    final_config = deep_merge(DEFAULT_CONFIG, user_config)
    for section, default_val in DEFAULT_CONFIG.items():
        if not isinstance(final_config.get(section), dict):
            logger.warning("Config section [%s] is not a table, using defaults.", section)
            final_config[section] = dict(default_val)
    return final_config


def setup_logging(config: Optional[Dict[str, Any]] = None, log_filename: str = "langpad.log") -> None:
    """
    Configures the root logger from the ``[logging]`` config section.

    Up to three handlers are installed:

    1. **File handler**: rotating ``langpad.log`` at ``file_level``
       (default DEBUG).
    2. **Console handler**: stderr at ``console_level`` (default WARNING),
       unless ``log_to_console`` is false.
    3. **Error-file handler**: rotating ``error.log`` holding only ERROR and
       CRITICAL records, when ``separate_error_log`` is true.

    Existing root handlers are replaced, so calling this twice does not
    duplicate records. I/O problems are reported on stderr and never raised.
    """
    logging_config = (config or {}).get("logging", {})
    log_file_level = getattr(logging, str(logging_config.get("file_level", "DEBUG")).upper(), logging.DEBUG)

    log_dir = os.path.dirname(log_filename)
    if log_dir and not os.path.exists(log_dir):
        try:
            os.makedirs(log_dir)
        except OSError as e_mkdir:
            print(f"Error creating log directory '{log_dir}': {e_mkdir}", file=sys.stderr)
            log_filename = os.path.join(tempfile.gettempdir(), "langpad.log")
            print(f"Logging to temporary file: '{log_filename}'", file=sys.stderr)

    file_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)-8s - %(name)-15s - %(message)s (%(filename)s:%(lineno)d)"
    )
    file_handler = None
    try:
        file_handler = logging.handlers.RotatingFileHandler(
            log_filename, maxBytes=2 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(file_formatter)
        file_handler.setLevel(log_file_level)
    except OSError as e_fh:
        print(f"Error setting up file logger for '{log_filename}': {e_fh}. File logging may be impaired.",
              file=sys.stderr)

    console_handler = None
    if logging_config.get("log_to_console", True):
        console_level = getattr(logging, str(logging_config.get("console_level", "WARNING")).upper(),
                                logging.WARNING)
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter("%(levelname)-8s - %(name)-12s - %(message)s"))
        console_handler.setLevel(console_level)

    error_file_handler = None
    if logging_config.get("separate_error_log", False):
        try:
            error_file_handler = logging.handlers.RotatingFileHandler(
                "error.log", maxBytes=1 * 1024 * 1024, backupCount=3, encoding="utf-8"
            )
            error_file_handler.setFormatter(file_formatter)
            error_file_handler.setLevel(logging.ERROR)
        except OSError as e_efh:
            print(f"Error setting up separate error log 'error.log': {e_efh}.", file=sys.stderr)

    root_logger = logging.getLogger()
    root_logger.handlers = []
    for handler in (file_handler, console_handler, error_file_handler):
        if handler:
            root_logger.addHandler(handler)
    root_logger.setLevel(log_file_level)

    logging.info("Logging setup complete. Root logger level: %s.", logging.getLevelName(root_logger.level))
    if file_handler:
        logging.info("File logging to '%s' at level: %s.", log_filename, logging.getLevelName(file_handler.level))
    if console_handler:
        logging.info("Console logging to stderr at level: %s.", logging.getLevelName(console_handler.level))
    if error_file_handler:
        logging.info("Error logging to 'error.log' at level: ERROR.")


def _encodings_to_try(encoding_guess: Optional[str], confidence: float) -> List[Tuple[str, str]]:
    ordered: List[Tuple[str, str]] = []
    if encoding_guess and confidence >= 0.75:
        ordered.append((encoding_guess, "strict"))
    elif encoding_guess:
        ordered.append((encoding_guess, "replace"))
    for fallback in (("utf-8", "strict"), ("latin-1", "strict")):
        if fallback not in ordered:
            ordered.append(fallback)
    return ordered


def read_source_file(path: str) -> str:
    """
    Reads a grammar or program file, detecting its encoding with chardet.

    A confident guess is tried strictly first, then UTF-8, Latin-1 and
    finally UTF-8 with replacement characters.

    Raises:
        OSError: If the file cannot be opened at all.
    """
    with open(path, "rb") as fh:
        raw = fh.read()
    if not raw:
        logger.info("File '%s' is empty.", path)
        return ""

    detected = chardet.detect(raw[:1024 * 20])
    encoding_guess = detected.get("encoding")
    confidence = detected.get("confidence") or 0.0
    logger.debug("Chardet detected encoding '%s' with confidence %.2f for '%s'.",
                  encoding_guess, confidence, path)

    for encoding, errors in _encodings_to_try(encoding_guess, confidence):
        try:
            text = raw.decode(encoding, errors=errors)
        except (UnicodeDecodeError, LookupError) as exc:
            logger.warning("Failed to decode '%s' as %s (errors=%s): %s", path, encoding, errors, exc)
            continue
        logger.debug("Read '%s' using encoding '%s' with errors='%s'.", path, encoding, errors)
        return text
    return raw.decode("utf-8", errors="replace")
