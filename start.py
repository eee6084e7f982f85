"""Server startup for vesper - serves the API, or a diagnostic app if it fails to import."""
import os
import sys
import traceback
from pathlib import Path

import uvicorn

host = os.environ.get("HOST", "0.0.0.0")
port = int(os.environ.get("PORT", "10000"))

# Modules import each other as top-level packages (models, services, ...)
sys.path.insert(0, str(Path(__file__).parent / "src"))

try:
    from api.server import app
    print("[start.py] vesper API imported", flush=True)
except Exception as e:
    failure = f"{type(e).__name__}: {e}\n{traceback.format_exc()}"
    print(f"[start.py] IMPORT FAILED: {failure}", flush=True)
    # Keep the port answering so the deploy health check reports the cause
    from fastapi import FastAPI
    from fastapi.responses import PlainTextResponse

    app = FastAPI(title="vesper API (failed to start)")

    @app.get("/api/health", response_class=PlainTextResponse, status_code=503)
    async def health():
        return f"UNHEALTHY - import error:\n{failure}"


if __name__ == "__main__":
    print(f"[start.py] Starting on {host}:{port}", flush=True)
    uvicorn.run(app, host=host, port=port, log_level=os.environ.get("LOG_LEVEL", "info").lower())
