"""
Export / import of the core collections as one JSON file.

Import replaces the persisted document; the running store has to be
reloaded afterwards (``LocalStore.load``) to see the imported data.
"""
from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog
from pydantic import ValidationError

from ..config import settings
from ..schemas.state import ExportBundle, PersistedDocument, STATE_VERSION
from ..storage.provider import StateStorage
from ..store.local_store import LocalStore
from .data_transform import utc_now_iso


logger = structlog.get_logger(__name__)

EXPORTED_COLLECTIONS = ("jobs", "customers", "services", "statuses")


class BackupFormatError(ValueError):
    """Raised when an import file cannot be read as an export bundle."""


def export_bundle(store: LocalStore) -> Dict[str, Any]:
    snapshot = store.snapshot(list(EXPORTED_COLLECTIONS) + ["settings"])
    bundle = ExportBundle(**snapshot, exported_at=utc_now_iso())
    return bundle.model_dump(by_alias=True)


def import_bundle(storage: StateStorage, bundle: Dict[str, Any], storage_key: Optional[str] = None) -> Dict[str, int]:
    """
    Overwrite the persisted document with the bundle contents.

    Collections the bundle does not carry come back as defaults on the next
    load. ``exportedAt`` is ignored.
    """
    try:
        parsed = ExportBundle.model_validate(bundle)
    except ValidationError as e:
        raise BackupFormatError(f"Invalid export file: {e.error_count()} problem(s)") from e

    state: Dict[str, Any] = {name: getattr(parsed, name) for name in EXPORTED_COLLECTIONS}
    if parsed.settings:
        state["settings"] = parsed.settings
    key = storage_key or settings.state_storage_key
    storage.write(key, PersistedDocument(state=state, version=STATE_VERSION).model_dump_json())
    counts = {name: len(state[name]) for name in EXPORTED_COLLECTIONS}
    logger.info("state_imported", key=key, counts=counts)
    return counts


def write_export_file(store: LocalStore, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    bundle = ExportBundle.model_validate(export_bundle(store))
    path.write_text(bundle.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    logger.info("state_exported", path=str(path))
    return path


def read_import_file(path: Union[str, Path]) -> Dict[str, Any]:
    try:
        bundle = ExportBundle.model_validate_json(Path(path).read_text(encoding="utf-8"))
    except ValidationError as e:
        raise BackupFormatError(f"Invalid export file: {e.error_count()} problem(s)") from e
    return bundle.model_dump(by_alias=True)
