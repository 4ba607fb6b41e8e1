"""Centralized path definitions for the termail application.

Single source of truth for every on-disk location the client uses.
Set ``TERMAIL_HOME`` to relocate everything (handy for tests).
"""

import os
from pathlib import Path

# Base application directory
TERMAIL_DIR = Path(os.getenv("TERMAIL_HOME", str(Path.home() / ".termail")))

# Subdirectories
LOGS_DIR = TERMAIL_DIR / "logs"

# Specific files
DATABASE_PATH = TERMAIL_DIR / "termail.db"
CONFIG_PATH = TERMAIL_DIR / "config.json"
