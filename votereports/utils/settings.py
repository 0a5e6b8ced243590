from typing import Any, Dict

from ..errors import InvalidArgument
from .storage import load_document, save_document

SETTINGS_FILE = "settings.json"

DEFAULT_SETTINGS = {
    # a runner-up within this many votes of the leader is a close race
    "close_race_margin": 5,
    "peak_times_limit": 10,
}


def get_report_settings() -> Dict[str, Any]:
    stored = load_document(SETTINGS_FILE)
    settings = dict(DEFAULT_SETTINGS)
    for key in DEFAULT_SETTINGS:
        if key in stored:
            settings[key] = stored[key]
    return settings


def save_report_settings(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and persist a partial update; returns the merged settings."""
    if not isinstance(changes, dict):
        raise InvalidArgument("Settings must be a JSON object.")
    unknown = set(changes) - set(DEFAULT_SETTINGS)
    if unknown:
        raise InvalidArgument(f"Unknown setting(s): {', '.join(sorted(unknown))}")

    settings = get_report_settings()
    for key, value in changes.items():
        if isinstance(value, bool):
            raise InvalidArgument(f"{key} must be an integer.")
        try:
            iv = int(value)
        except (TypeError, ValueError):
            raise InvalidArgument(f"{key} must be an integer.")
        if iv < 0 or (key == "peak_times_limit" and iv == 0):
            raise InvalidArgument(f"{key} is out of range.")
        settings[key] = iv

    save_document(SETTINGS_FILE, settings)
    return settings
