from fastapi import APIRouter
from testpulse.routes.flake import router as flake_router
from testpulse.routes.report import router as report_router

router = APIRouter(prefix="/v1")

router.include_router(flake_router)
router.include_router(report_router)
