#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Serves homeserve.main:app with auto-reload against the database named by
DATABASE_URL (a local SQLite file when unset).
"""
import os
from pathlib import Path

import uvicorn

backend_dir = Path(__file__).parent
os.chdir(backend_dir)

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    print(f"Starting homeserve at http://localhost:{port} (docs at /docs)")

    uvicorn.run(
        "homeserve.main:app",
        host=host,
        port=port,
        reload=True,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
