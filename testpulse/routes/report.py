from fastapi import APIRouter, Depends, HTTPException

from testpulse.core.config import logger
from testpulse.core.errors import StorageError
from testpulse.core.report import generate, persist
from testpulse.db.base import StorageGateway
from testpulse.db.factory import get_gateway
from testpulse.schemas import ReportRequest, ShortSummary

router = APIRouter(prefix="/report", tags=["report"])


@router.post("", response_model=ShortSummary)
def create_report(request: ReportRequest, gateway: StorageGateway = Depends(get_gateway)):
    """Aggregate one run's test groups, store them and return the short summary."""
    snapshot = generate(request.detail, request.groups)
    try:
        persist(snapshot, gateway)
    except StorageError as e:
        logger.error(f"Error storing report for {request.detail.name}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return snapshot.short_summary()
