"""
MessageVault - unified chat message archive
HTTP server entrypoint (FastAPI + uvicorn)
"""

import os

import uvicorn

from app.main import app


if __name__ == "__main__":
    print("MessageVault starting...")
    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8080")),
    )
