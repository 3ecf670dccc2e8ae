"""Shared test configuration."""

import os
from pathlib import Path

# Resolve config/store.yaml regardless of the directory pytest is run from
os.environ.setdefault("CONFIG_PATH", str(Path(__file__).resolve().parent.parent / "config" / "store.yaml"))
