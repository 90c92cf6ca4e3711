# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from fastapi import APIRouter, Depends

from app.api.dependencies import get_services
from app.services.container import ServiceContainer

router = APIRouter()


@router.get("/online")
def list_online_users(services: ServiceContainer = Depends(get_services)):
    """Users connected to this process."""
    users = services.presence.online_users()
    return {"total": len(users), "users": users}
