"""Logging helpers for ipgroup scripts."""
from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

PREFIX = "[ip_classify]"


def log_path() -> Optional[Path]:
    """Return the lookup log path from IPGROUP_LOG, or None when disabled."""
    override = os.environ.get("IPGROUP_LOG")
    if override:
        return Path(override)
    return None


def warn(message: str) -> None:
    sys.stderr.write(f"{PREFIX} {message}\n")


def append_log(tag: str, payload: Dict[str, object]) -> None:
    path = log_path()
    if path is None:
        return
    try:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(
                f"{timestamp} [LOOKUP] tag={tag} payload={json.dumps(payload, ensure_ascii=False)}\n"
            )
    except OSError:  # pragma: no cover
        pass
