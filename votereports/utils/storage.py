import json
import os
from datetime import datetime, timezone
from pathlib import Path
from filelock import FileLock

from ..errors import DataAccessError

DATA_DIR = Path(os.environ.get("VOTEREPORTS_DATA_DIR") or Path(__file__).resolve().parents[1] / "data")

# bump when the layout of a stored document changes
SCHEMA_VERSION = 1
META_KEYS = ("schema_version", "updated_at_utc")

def _lock() -> FileLock:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    return FileLock(str(DATA_DIR / ".data.lock"))

def load_json(filename: str, default):
    path = DATA_DIR / filename
    if not path.exists():
        return default
    with _lock():
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

def save_json(filename: str, data) -> None:
    path = DATA_DIR / filename
    tmp = DATA_DIR / (filename + ".tmp")
    with _lock():
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)

def load_document(filename: str) -> dict:
    """
    Read a versioned JSON object, without its meta keys.
    Files written before versioning count as version 1. A missing file is an
    empty document; an unreadable or newer one is a DataAccessError.
    """
    try:
        data = load_json(filename, default={})
    except (OSError, json.JSONDecodeError) as exc:
        raise DataAccessError(f"{filename} could not be read.") from exc
    if not isinstance(data, dict):
        raise DataAccessError(f"{filename} does not hold a JSON object.")
    try:
        version = int(data.get("schema_version", 1))
    except (TypeError, ValueError):
        raise DataAccessError(f"{filename} has an invalid schema_version.")
    if version > SCHEMA_VERSION:
        raise DataAccessError(
            f"{filename} was written with schema version {version}; this release reads up to {SCHEMA_VERSION}."
        )
    return {k: v for k, v in data.items() if k not in META_KEYS}

def save_document(filename: str, data: dict) -> None:
    payload = dict(data)
    payload["schema_version"] = SCHEMA_VERSION
    payload["updated_at_utc"] = datetime.now(timezone.utc).isoformat()
    try:
        save_json(filename, payload)
    except OSError as exc:
        raise DataAccessError(f"{filename} could not be written.") from exc
