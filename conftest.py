"""Seed the process environment from .env.test so Settings validates at import time."""
from __future__ import annotations

import os
from pathlib import Path

ENV_FILE = Path(__file__).resolve().parent / ".env.test"


def _load_test_env(path: Path) -> None:
    if not path.exists():
        return
    for raw in path.read_text().splitlines():
        entry = raw.strip()
        if not entry or entry.startswith("#") or "=" not in entry:
            continue
        key, value = entry.split("=", 1)
        # explicit environment wins over the file
        os.environ.setdefault(key.strip(), value.strip())


_load_test_env(ENV_FILE)
