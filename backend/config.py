"""Settings for the GEDCOM service and the decoder options it passes on.

Values come from the environment, after loading a .env file if present:

    GEDCOM_CHARSET                default charset for files without HEAD.CHAR (ASCII or ANSEL)
    GEDCOM_LEADING_WHITESPACE     tolerate leading whitespace and blank lines, even in version 7
    GEDCOM_NOTE_CONT_INSERT_NL    insert a newline before the first continuation of a NOTE
    GEDCOM_MAX_UPLOAD_BYTES       largest accepted upload
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from gedcom_tree import OPTION_DEFAULT_CHARSET, OPTION_NL_AFTER_NOTE, OPTION_TOLERATE_WHITESPACE

logger = logging.getLogger("gedcomtree.config")

DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("true", "1", "yes")


def load_options() -> dict[str, str]:
    """Build the Gedcom option map from the environment."""
    load_dotenv()
    options: dict[str, str] = {}
    charset = os.getenv("GEDCOM_CHARSET", "").strip().upper()
    if charset in ("ASCII", "ANSEL"):
        options[OPTION_DEFAULT_CHARSET] = charset
    elif charset and charset != "UTF-8":
        logger.warning(f"Ignoring unsupported GEDCOM_CHARSET \"{charset}\"")
    if _env_flag("GEDCOM_LEADING_WHITESPACE"):
        options[OPTION_TOLERATE_WHITESPACE] = "true"
    if _env_flag("GEDCOM_NOTE_CONT_INSERT_NL"):
        options[OPTION_NL_AFTER_NOTE] = "true"
    return options


@dataclass
class Settings:
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    options: dict[str, str] = field(default_factory=dict)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        settings = Settings(options=load_options())
        raw = os.getenv("GEDCOM_MAX_UPLOAD_BYTES")
        if raw:
            try:
                settings.max_upload_bytes = int(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid GEDCOM_MAX_UPLOAD_BYTES \"{raw}\"")
        _settings = settings
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
