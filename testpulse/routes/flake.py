from fastapi import APIRouter, Depends, HTTPException, Query

from testpulse.core.config import logger
from testpulse.core.errors import StorageError
from testpulse.db.base import StorageGateway
from testpulse.db.factory import get_gateway
from testpulse.schemas import EnvCharts, EnvironmentTestsAndTestCases, Overview, TestCharts

router = APIRouter(tags=["flake"])


def _storage_failure(e: StorageError) -> HTTPException:
    logger.error(f"Storage error: {e}")
    return HTTPException(status_code=500, detail=str(e))


@router.get("/overview", response_model=Overview)
def serve_overview(gateway: StorageGateway = Depends(get_gateway)):
    try:
        return gateway.get_overview()
    except StorageError as e:
        raise _storage_failure(e)


@router.get("/env", response_model=EnvCharts)
def serve_env_charts(
    env: str = Query(..., min_length=1, description="environment name"),
    tests_in_top: int = Query(10, ge=0, description="number of flakiest tests to chart"),
    gateway: StorageGateway = Depends(get_gateway),
):
    try:
        return gateway.get_env_charts(env, tests_in_top)
    except StorageError as e:
        raise _storage_failure(e)


@router.get("/test", response_model=TestCharts)
def serve_test_charts(
    env: str = Query(..., min_length=1, description="environment name"),
    test: str = Query(..., min_length=1, description="test name"),
    gateway: StorageGateway = Depends(get_gateway),
):
    try:
        return gateway.get_test_charts(env, test)
    except StorageError as e:
        raise _storage_failure(e)


@router.get("/db", response_model=EnvironmentTestsAndTestCases)
def serve_environment_tests_and_test_cases(gateway: StorageGateway = Depends(get_gateway)):
    try:
        return gateway.get_environment_tests_and_test_cases()
    except StorageError as e:
        raise _storage_failure(e)
