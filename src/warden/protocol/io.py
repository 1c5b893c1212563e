"""JSON state-file helpers.

Readers are tolerant: a missing file yields the default silently, an
unreadable or malformed one yields the default with a warning. Writers
replace files atomically, except the event feed, which is append-only.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)


def read_json(path: Path, default: Any) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return default
    except OSError as exc:
        log.warning("cannot read %s: %s", path, exc)
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        log.warning("malformed json in %s: %s", path, exc)
        return default


def write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2)
        handle.write("\n")
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp, path)


def append_jsonl(path: Path, item: Any) -> None:
    """Append one compact JSON line; the line is written in a single call."""
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(item, separators=(",", ":"), default=str) + "\n"
    with path.open("a", encoding="utf-8") as handle:
        handle.write(line)
