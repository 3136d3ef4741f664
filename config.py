"""
config.py
Runtime settings, read once from the environment.
"""

from __future__ import annotations

import os
from pathlib import Path

# SQLite snapshot of the gym data (members, plans, payments, history)
DB_FILE = Path(os.getenv("GYM_DB_FILE") or Path(__file__).with_name("gym.db"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE") or None
