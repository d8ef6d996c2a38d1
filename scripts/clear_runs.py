#!/usr/bin/env python3
"""
Clear all run records from the database.

Use when:
- You want to reset the run history from the command line.
- You need to verify the DB is empty after clearing.

Run from project root:
  python scripts/clear_runs.py

Requires: PostgreSQL running and DB env vars (DB_HOST, DB_NAME, etc.) or .env.
Rendered outputs are not touched.
"""

import sys
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv(PROJECT_ROOT / ".env")

from blueprint.core.db import clear_all_runs, close_pool, init_db

if __name__ == "__main__":
    init_db()
    n = clear_all_runs()
    close_pool()
    print(f"Cleared {n} runs from the database.")
