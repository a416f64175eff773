"""JSON file holding the current dispatch target list between CLI invocations."""

from __future__ import annotations

from collections.abc import Sequence
import json
import os
from pathlib import Path

from .config import state_dir
from .errors import BulkImportError
from .models import DispatchTarget, target_to_dict

TARGETS_FILENAME = "targets.json"


def default_targets_path(config_path: str | Path | None = None) -> Path:
    return state_dir(config_path) / TARGETS_FILENAME


def load_targets(path: Path) -> list[DispatchTarget]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise BulkImportError(f"Could not read targets file '{path}': {exc}.") from exc
    if not isinstance(data, list):
        raise BulkImportError(f"Targets file '{path}' must hold a JSON array.")

    targets: list[DispatchTarget] = []
    for entry in data:
        if not isinstance(entry, dict) or entry.get("id") in (None, ""):
            continue
        targets.append(
            DispatchTarget(
                id=str(entry["id"]),
                name=str(entry.get("name") or ""),
                selected=bool(entry.get("selected", True)),
            )
        )
    return targets


def save_targets(path: Path, targets: Sequence[DispatchTarget]) -> None:
    serialized = json.dumps([target_to_dict(target) for target in targets], indent=2, ensure_ascii=False)
    temp_path = path.with_name(f"{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path.write_text(serialized + "\n", encoding="utf-8")
        os.replace(temp_path, path)
    except OSError as exc:
        raise BulkImportError(f"Could not write targets file '{path}': {exc}.") from exc
