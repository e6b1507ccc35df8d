from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from starlette.requests import Request
from starlette.responses import JSONResponse

from ....core.config import get_settings
from ....db import check_database_health
from ....models.identities import Identity
from ...deps import get_db_session

router = APIRouter(tags=["ops"])


@router.get("/health")
def health(_: Request, session: Session = Depends(get_db_session)) -> JSONResponse:
    """Readiness of the ingest pipeline.

    Only the database decides the status code. The placeholder actor is created
    on first use, so its absence is reported but is not a failure.
    """
    settings = get_settings()
    try:
        placeholder = session.get(Identity, settings.placeholder_actor_id) is not None
        orm_ok = True
        orm_details = "ok"
    except Exception as exc:  # noqa: BLE001
        session.rollback()
        placeholder = None
        orm_ok = False
        orm_details = str(exc)

    db = check_database_health()
    overall_ok = db["ok"] and orm_ok
    return JSONResponse(
        {
            "status": "ok" if overall_ok else "degraded",
            "db": db,
            "orm": {"ok": orm_ok, "details": orm_details},
            "webhooks": {
                "secret_configured": bool(settings.webhook_secret),
                "placeholder_actor_present": placeholder,
                "fail_open": settings.availability_over_strict_security,
            },
        },
        status_code=200 if overall_ok else 503,
    )
