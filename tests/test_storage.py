"""Tests for the storage gateways."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, inspect, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from conftest import T0, make_environment_row, make_group, make_test_row
from testpulse.core.errors import RollbackError, StorageError
from testpulse.core.report import generate, persist
from testpulse.db.base import _column_values
from testpulse.db.postgres import PostgresGateway
from testpulse.db.sqlite import SQLiteGateway
from testpulse import models
from testpulse.models import EnvironmentTest
from testpulse.schemas import FAIL, PASS, SKIP


def count_rows(gateway, model) -> int:
    session = gateway.SessionLocal()
    try:
        return session.query(func.count()).select_from(model).scalar()
    finally:
        session.close()


def test_initialize_creates_tables(sqlite_gateway) -> None:
    tables = inspect(sqlite_gateway.engine).get_table_names()

    assert "db_environment_tests" in tables
    assert "db_test_cases" in tables


def test_initialize_twice_keeps_data(sqlite_gateway) -> None:
    sqlite_gateway.set(make_environment_row("c1"), [make_test_row("c1", "TestA", PASS)])

    sqlite_gateway.initialize()

    assert count_rows(sqlite_gateway, EnvironmentTest) == 1
    assert count_rows(sqlite_gateway, models.TestCase) == 1


def test_set_stores_rows(sqlite_gateway) -> None:
    sqlite_gateway.set(
        make_environment_row("c1", fail=1, passed=1, duration=12.5),
        [
            make_test_row("c1", "TestA", PASS, duration=1.5, order=1, pr="7"),
            make_test_row("c1", "TestB", FAIL, duration=0.25, order=2, pr="7"),
        ],
    )

    session = sqlite_gateway.SessionLocal()
    try:
        environment_test = session.query(EnvironmentTest).one()
        test_b = session.query(models.TestCase).filter(models.TestCase.test_name == "TestB").one()
    finally:
        session.close()

    assert environment_test.number_of_fail == 1
    assert environment_test.total_duration == 12.5
    assert environment_test.test_time == T0
    assert test_b.result == FAIL
    assert test_b.duration == 0.25
    assert test_b.test_order == 2
    assert test_b.pr == "7"
    assert test_b.test_time == T0


def test_set_twice_replaces_rows(sqlite_gateway) -> None:
    sqlite_gateway.set(make_environment_row("c1", fail=1), [make_test_row("c1", "TestA", FAIL)])
    sqlite_gateway.set(make_environment_row("c1", passed=1), [make_test_row("c1", "TestA", PASS)])

    session = sqlite_gateway.SessionLocal()
    try:
        environment_tests = session.query(EnvironmentTest).all()
        test_cases = session.query(models.TestCase).all()
    finally:
        session.close()

    assert len(environment_tests) == 1
    assert (environment_tests[0].number_of_fail, environment_tests[0].number_of_pass) == (0, 1)
    assert len(test_cases) == 1
    assert test_cases[0].result == PASS


def test_set_keeps_other_keys(sqlite_gateway) -> None:
    sqlite_gateway.set(make_environment_row("c1"), [make_test_row("c1", "TestA", PASS)])
    sqlite_gateway.set(make_environment_row("c1", env_name="mac"), [make_test_row("c1", "TestA", PASS, env_name="mac")])
    sqlite_gateway.set(make_environment_row("c2"), [make_test_row("c2", "TestA", PASS)])

    assert count_rows(sqlite_gateway, EnvironmentTest) == 3
    assert count_rows(sqlite_gateway, models.TestCase) == 3


def test_set_without_test_cases(sqlite_gateway) -> None:
    sqlite_gateway.set(make_environment_row("c1"), [])

    assert count_rows(sqlite_gateway, EnvironmentTest) == 1
    assert count_rows(sqlite_gateway, models.TestCase) == 0


def fail_on_environment_insert(monkeypatch):
    real_upsert = SQLiteGateway._upsert

    def upsert(self, session, model, rows):
        if model is EnvironmentTest:
            raise OperationalError("INSERT INTO db_environment_tests", {}, Exception("disk I/O error"))
        return real_upsert(self, session, model, rows)

    monkeypatch.setattr(SQLiteGateway, "_upsert", upsert)


def test_failed_set_writes_nothing(sqlite_gateway, monkeypatch) -> None:
    fail_on_environment_insert(monkeypatch)

    with pytest.raises(StorageError) as excinfo:
        sqlite_gateway.set(
            make_environment_row("c1"),
            [make_test_row("c1", "TestA", PASS), make_test_row("c1", "TestB", FAIL)],
        )

    assert "insert environment test" in str(excinfo.value)
    assert not isinstance(excinfo.value, RollbackError)
    monkeypatch.undo()
    assert count_rows(sqlite_gateway, EnvironmentTest) == 0
    assert count_rows(sqlite_gateway, models.TestCase) == 0


def test_failed_set_keeps_previous_rows(sqlite_gateway, monkeypatch) -> None:
    sqlite_gateway.set(make_environment_row("c1", fail=1), [make_test_row("c1", "TestA", FAIL)])
    fail_on_environment_insert(monkeypatch)

    with pytest.raises(StorageError):
        sqlite_gateway.set(make_environment_row("c1", passed=1), [make_test_row("c1", "TestA", PASS)])

    monkeypatch.undo()
    session = sqlite_gateway.SessionLocal()
    try:
        assert session.query(models.TestCase).one().result == FAIL
        assert session.query(EnvironmentTest).one().number_of_fail == 1
    finally:
        session.close()


def test_rollback_failure_is_reported_with_cause(sqlite_gateway, monkeypatch) -> None:
    fail_on_environment_insert(monkeypatch)
    open_session = sqlite_gateway.SessionLocal

    def session_with_broken_rollback():
        session = open_session()
        real_rollback = session.rollback

        def rollback():
            real_rollback()
            raise OperationalError("ROLLBACK", {}, Exception("connection lost"))

        session.rollback = rollback
        return session

    sqlite_gateway.SessionLocal = session_with_broken_rollback

    with pytest.raises(RollbackError) as excinfo:
        sqlite_gateway.set(make_environment_row("c1"), [make_test_row("c1", "TestA", PASS)])

    message = str(excinfo.value)
    assert "disk I/O error" in message
    assert "connection lost" in message
    assert isinstance(excinfo.value.cause, OperationalError)
    assert isinstance(excinfo.value.rollback_error, OperationalError)
    assert excinfo.value.phase == "insert environment test"


def test_sqlite_analytics_are_unsupported(sqlite_gateway) -> None:
    sqlite_gateway.set(make_environment_row("c1"), [make_test_row("c1", "TestA", PASS)])

    assert not sqlite_gateway.supports_analytics
    assert not sqlite_gateway.get_overview().supported
    assert not sqlite_gateway.get_env_charts("linux", 10).supported
    assert not sqlite_gateway.get_test_charts("linux", "TestA").supported
    assert not sqlite_gateway.get_environment_tests_and_test_cases().supported
    assert sqlite_gateway.get_overview().summary_table == []


def test_persist_report(sqlite_gateway, detail) -> None:
    snapshot = generate(detail, [
        make_group("TestA", PASS, elapsed=1.5, events=2),
        make_group("TestB", FAIL, elapsed=0.25),
        make_group("TestC", SKIP, hidden=True),
    ])

    persist(snapshot, sqlite_gateway)
    persist(snapshot, sqlite_gateway)

    assert count_rows(sqlite_gateway, EnvironmentTest) == 1
    assert count_rows(sqlite_gateway, models.TestCase) == 2


@pytest.fixture
def analytics_gateway(shared_engine):
    """Gateway serving the analytical queries, filled through a sqlite writer on the same engine."""
    writer = SQLiteGateway(engine=shared_engine)
    writer.initialize()
    for index, (result, env_name) in enumerate([(PASS, "linux"), (FAIL, "linux"), (PASS, "linux"), (FAIL, "mac")]):
        commit_id = f"c{index}"
        test_time = T0 + timedelta(hours=index)
        writer.set(
            make_environment_row(commit_id, env_name=env_name, test_time=test_time,
                                 fail=int(result == FAIL), passed=int(result == PASS), duration=10.0),
            [
                make_test_row(commit_id, "TestA", result, env_name=env_name, test_time=test_time),
                make_test_row(commit_id, "TestB", PASS, env_name=env_name, test_time=test_time),
            ],
        )
    return PostgresGateway(engine=shared_engine)


def test_env_charts_from_store(analytics_gateway) -> None:
    charts = analytics_gateway.get_env_charts("linux", 10)

    assert charts.supported
    assert [row.test_name for row in charts.recent_flake_percent_table] == ["TestA", "TestB"]
    assert charts.recent_flake_percent_table[0].recent_flake_percentage == 33.33
    assert charts.counts_and_durations[0].number_of_runs == 3


def test_test_charts_from_store(analytics_gateway) -> None:
    charts = analytics_gateway.get_test_charts("mac", "TestA")

    assert len(charts.flake_by_day) == 1
    assert charts.flake_by_day[0].number_of_runs == 1
    assert charts.flake_by_day[0].flake_percentage == 0.0


def test_overview_from_store(analytics_gateway) -> None:
    result = analytics_gateway.get_overview()

    assert result.supported
    assert {row.env_name for row in result.summary_table} == {"linux", "mac"}


def test_environment_tests_and_test_cases_from_store(analytics_gateway) -> None:
    result = analytics_gateway.get_environment_tests_and_test_cases()

    assert len(result.environment_tests) == 4
    assert len(result.test_cases) == 8
    assert result.test_cases[0].test_time.tzinfo is not None


def test_read_failure_is_wrapped(analytics_gateway, shared_engine) -> None:
    EnvironmentTest.__table__.drop(shared_engine)

    with pytest.raises(StorageError) as excinfo:
        analytics_gateway.get_overview()

    assert "failed to read overview" in str(excinfo.value)


def test_naive_times_are_read_back_as_utc(analytics_gateway, shared_engine) -> None:
    with shared_engine.begin() as connection:
        connection.execute(text(
            'INSERT INTO db_environment_tests ("CommitID", "EnvName", "ReportTime", "TestTime", '
            '"NumberOfFail", "NumberOfPass", "NumberOfSkip", "TotalDuration", "ReportVersion") '
            "VALUES ('legacy', 'mac', '2024-03-05T09:00:00', '2024-03-05T08:00:00', 2, 0, 0, 5.0, 'v0')"
        ))

    result = analytics_gateway.get_overview()

    mac = next(row for row in result.summary_table if row.env_name == "mac")
    assert mac.number_of_runs == 2
    assert mac.last_run == datetime(2024, 3, 5, 8, 0, tzinfo=T0.tzinfo)


def test_naive_and_aware_rows_share_the_overview(analytics_gateway, shared_engine) -> None:
    naive = datetime(2024, 3, 5, 8, 0)
    SQLiteGateway(engine=shared_engine).set(
        make_environment_row("c9", env_name="windows", test_time=naive, fail=1),
        [make_test_row("c9", "TestA", FAIL, env_name="windows", test_time=naive)],
    )

    result = analytics_gateway.get_overview()

    windows = next(row for row in result.summary_table if row.env_name == "windows")
    assert windows.last_run == naive.replace(tzinfo=T0.tzinfo)
    assert {row.env_name for row in result.summary_avg_fail} == {"linux", "mac", "windows"}


def test_repeated_test_name_keeps_last_row(sqlite_gateway) -> None:
    sqlite_gateway.set(
        make_environment_row("c1", fail=1),
        [make_test_row("c1", "TestA", PASS, order=1), make_test_row("c1", "TestA", FAIL, order=2)],
    )

    session = sqlite_gateway.SessionLocal()
    try:
        stored = session.query(models.TestCase).one()
    finally:
        session.close()
    assert (stored.result, stored.test_order) == (FAIL, 2)


class RecordingSession:
    def __init__(self):
        self.executed = []

    def execute(self, statement, rows):
        self.executed.append((statement, rows))


def test_postgres_upsert_statement(shared_engine) -> None:
    session = RecordingSession()
    rows = [
        _column_values(models.TestCase, make_test_row("c1", "TestA", PASS, order=1)),
        _column_values(models.TestCase, make_test_row("c1", "TestB", PASS, order=2)),
        _column_values(models.TestCase, make_test_row("c1", "TestA", FAIL, order=3)),
    ]

    PostgresGateway(engine=shared_engine)._upsert(session, models.TestCase, rows)

    (statement, sent), = session.executed
    assert [(row["TestName"], row["Result"]) for row in sent] == [("TestA", FAIL), ("TestB", PASS)]

    sql = str(statement.compile(dialect=postgresql.dialect()))
    conflict_target = sql.split("ON CONFLICT (", 1)[1].split(")", 1)[0]
    assert set(conflict_target.split(", ")) == {'"CommitId"', '"EnvName"', '"TestName"'}
    update = sql.split("DO UPDATE SET", 1)[1]
    for column in ("PR", "Result", "Duration", "TestOrder", "TestTime"):
        assert f'"{column}" = excluded."{column}"' in update
    for column in ("CommitId", "EnvName", "TestName"):
        assert f'"{column}" = excluded' not in update
