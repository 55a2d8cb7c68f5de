"""Shared package tests run without Redis, a notification service or a database server."""

import os
import sys
from pathlib import Path

SERVICES_DIR = Path(__file__).resolve().parents[2]

if str(SERVICES_DIR) not in sys.path:
    sys.path.insert(0, str(SERVICES_DIR))

os.environ["REDIS_URL"] = ""
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.pop("NOTIFICATION_SERVICE_URL", None)
