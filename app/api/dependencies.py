# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from fastapi import HTTPException, Request, status

from app.db.session import get_db  # noqa: F401
from app.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Services wired at startup and stored on app.state."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Realtime services are not initialised",
        )
    return services
