"""FastAPI application for ISP billing, payment callbacks, and router provisioning."""
from __future__ import annotations

import os
from typing import Any, Dict

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import app_context
from .app.config import load_db_config
from .app.routes.billing import router as billing_router
from .app.routes.network import router as network_router
from .app.services.billing import get_billing_config
from .maintenance import get_maintenance_metrics, shutdown_maintenance_scheduler, start_maintenance_scheduler

load_dotenv()

DB_CFG = load_db_config()
CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]


def get_conn():
    return psycopg2.connect(**DB_CFG)


app_context.configure(get_conn=get_conn)

app = FastAPI(title="ISP Billing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_router)
app.include_router(network_router)


@app.on_event("startup")
def _start_maintenance_scheduler() -> None:
    config = get_billing_config()
    if config.maintenance_scheduler_enabled:
        start_maintenance_scheduler(config.maintenance_interval_seconds)


@app.on_event("shutdown")
def _shutdown_maintenance_scheduler() -> None:
    shutdown_maintenance_scheduler()


@app.get("/api/healthz")
def healthz():
    return {"ok": True}


@app.get("/api/metrics/maintenance")
def read_maintenance_metrics() -> Dict[str, Any]:
    return get_maintenance_metrics()
