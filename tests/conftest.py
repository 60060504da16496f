from __future__ import annotations

import sys
from pathlib import Path


# fleetalerts and main.py both live under app/.
APP_DIR = Path(__file__).resolve().parents[1] / "app"

if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))
