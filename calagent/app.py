from __future__ import annotations

import logging

from fastapi import FastAPI

from .config import API_BASE
from .routes import router

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="calagent")
app.include_router(router, prefix=API_BASE)
