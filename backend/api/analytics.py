"""Read-side analytics endpoints under /api/analytics."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from auth import get_current_user, require_roles
from database import get_db
from models.user import User
from services.analytics import analytics_service

router = APIRouter()

TimeRange = Literal["1h", "24h", "7d", "30d", "90d"]


@router.get("/dashboard")
async def dashboard(
    range_: TimeRange = Query("24h", alias="range"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    data = await analytics_service.get_dashboard(db, range_)
    return {"success": True, "data": data}


@router.get("/realtime")
def realtime(user: User = Depends(get_current_user)):
    return {"success": True, "data": analytics_service.realtime_stats()}


@router.post("/realtime/reset")
def reset_realtime(user: User = Depends(require_roles("admin"))):
    analytics_service.reset_realtime()
    return {"success": True, "message": "Real-time metrics reset"}


@router.get("/stats")
def service_stats(user: User = Depends(get_current_user)):
    return {"success": True, "data": analytics_service.service_stats()}
