from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from testpulse import schemas
from testpulse.db.sqlite import SQLiteGateway

T0 = datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc)  # a Monday


def make_group(name, status, elapsed=0.0, start=T0, end=None, hidden=False, events=1):
    """Build a test group whose last event reports `elapsed` seconds."""
    if end is None:
        end = start + timedelta(seconds=elapsed)
    steps = [
        schemas.TestEvent(action="run", test=name, elapsed=0.0)
        for _ in range(events - 1)
    ]
    steps.append(schemas.TestEvent(action=status, test=name, elapsed=elapsed))
    return schemas.TestGroup(test_name=name, status=status, events=steps, start=start, end=end, hidden=hidden)


def make_environment_row(commit_id, env_name="linux", test_time=T0, fail=0, passed=0, skip=0, duration=0.0):
    return schemas.EnvironmentRunRow(
        commit_id=commit_id,
        env_name=env_name,
        report_time=test_time + timedelta(minutes=30),
        test_time=test_time,
        number_of_fail=fail,
        number_of_pass=passed,
        number_of_skip=skip,
        total_duration=duration,
        report_version="v0.1.0_test",
    )


def make_test_row(commit_id, test_name, result, env_name="linux", test_time=T0, duration=1.0, order=1, pr=""):
    return schemas.TestCaseRow(
        pr=pr,
        commit_id=commit_id,
        test_name=test_name,
        result=result,
        duration=duration,
        env_name=env_name,
        test_order=order,
        test_time=test_time,
    )


@pytest.fixture
def detail():
    return schemas.RunMetadata(name="linux", details="abc123", pr="42")


@pytest.fixture
def sqlite_gateway(tmp_path):
    gateway = SQLiteGateway(str(tmp_path / "history" / "tests.db"))
    gateway.initialize()
    return gateway


@pytest.fixture
def shared_engine():
    """In-memory sqlite engine that every session shares."""
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    yield engine
    engine.dispose()
