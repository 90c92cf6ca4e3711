# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from fastapi import APIRouter, Request

from app.core.circuit_breaker import get_circuit_breaker_status
from app.core.config import settings

router = APIRouter()


@router.get("/health")
def health(request: Request):
    """Liveness plus the state of the background machinery."""
    services = getattr(request.app.state, "services", None)
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "version": settings.VERSION,
        "changeFeed": {
            name: state.value for name, state in services.watcher.states.items()
        }
        if services is not None
        else {},
        "scheduler": scheduler.state.value if scheduler is not None else "stopped",
        "circuitBreakers": get_circuit_breaker_status(),
    }
