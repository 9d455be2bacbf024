#!/usr/bin/env python3
# backend/run.py
"""
Development server runner for the registration API.

Uses the SQLite database from DATABASE_URL (defaults to a local file).
"""
import os
import sys
from pathlib import Path

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

import uvicorn

if __name__ == "__main__":
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    print(f"Starting registration API at http://{host}:{port}")
    print(f"API Docs: http://{host}:{port}/docs")

    uvicorn.run("app.main:app", host=host, port=port, reload=True, log_level="info")
