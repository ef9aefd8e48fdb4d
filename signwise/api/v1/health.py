"""Health check endpoint with database connectivity and token reaper state."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from signwise.core.config import settings
from signwise.core.database import check_db_connected, get_db
from signwise.schemas.health import HealthResponse

router = APIRouter()


@router.get("/", response_model=HealthResponse)
def get_health(request: Request, db: Session = Depends(get_db)) -> HealthResponse:
    """
    Return service health status and database connectivity.
    Used by load balancers and monitoring.
    """
    db_status = "connected" if check_db_connected(db) else "disconnected"
    reaper = getattr(request.app.state, "token_reaper", None)
    if reaper is None:
        reaper_status = "disabled"
    else:
        reaper_status = "running" if reaper.running else "stopped"

    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        database=db_status,
        token_reaper=reaper_status,
    )
