"""
Protocol Engine API Server Entry Point

  uvicorn main:app --host 0.0.0.0 --port $PORT
"""

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from protocol_engine import __version__
from protocol_engine.api import register_protocol_endpoints

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("protocol_engine.server")

# ============================================
# App Configuration
# ============================================
app = FastAPI(
    title="Protocol Engine API",
    description="Biomarker classification and prioritized clinical action reports",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

register_protocol_endpoints(app)
logger.info(f"Protocol Engine v{__version__} endpoints registered")


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}


# For local development
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)), reload=True)
