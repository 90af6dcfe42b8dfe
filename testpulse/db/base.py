from abc import ABC, abstractmethod
from typing import Callable, List, Sequence

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from testpulse.core.config import logger
from testpulse.core.errors import RollbackError, StorageError
from testpulse.models import Base, EnvironmentTest, TestCase
from testpulse.schemas import (
    EnvCharts, EnvironmentRunRow, EnvironmentTestsAndTestCases, Overview, TestCaseRow, TestCharts,
)


class StorageGateway(ABC):
    """Contract every storage backend satisfies.

    Backends that do not serve the analytical queries set
    `supports_analytics = False` and return results with `supported=False`,
    so an empty result can be told apart from an unsupported one.
    """

    name = ""
    supports_analytics = False

    @abstractmethod
    def initialize(self) -> None:
        """Create both tables if they do not exist. Safe to call repeatedly."""

    @abstractmethod
    def set(self, environment_row: EnvironmentRunRow, test_rows: Sequence[TestCaseRow]) -> None:
        """Upsert one run's rows atomically; either every row is stored or none is."""

    def get_overview(self) -> Overview:
        return Overview(supported=False)

    def get_env_charts(self, env: str, tests_in_top: int) -> EnvCharts:
        return EnvCharts(supported=False)

    def get_test_charts(self, env: str, test: str) -> TestCharts:
        return TestCharts(supported=False)

    def get_environment_tests_and_test_cases(self) -> EnvironmentTestsAndTestCases:
        return EnvironmentTestsAndTestCases(supported=False)


def _column_values(model, row) -> dict:
    """Map a pydantic row onto the model's table column keys."""
    return {
        attr.columns[0].key: getattr(row, attr.key)
        for attr in inspect(model).mapper.column_attrs
    }


def _attribute_values(model, obj) -> dict:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(model).mapper.column_attrs}


class SQLGateway(StorageGateway):
    """Shared SQLAlchemy implementation; subclasses supply the engine and the
    dialect `insert` that provides ON CONFLICT upserts."""

    insert: Callable = None  # dialect insert, set with staticmethod()

    def __init__(self, engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def initialize(self) -> None:
        try:
            logger.info(f"Creating {self.name} database tables...")
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Error initializing {self.name} database: {e}")
            raise StorageError(f"failed to initialize tables: {e}") from e

    def _upsert(self, session, model, rows: List[dict]) -> None:
        if not rows:
            return
        table = model.__table__
        keys = [column.key for column in table.primary_key.columns]
        # one statement may not touch a key twice on postgres; the last row wins
        rows = list({tuple(row[key] for key in keys): row for row in rows}.values())
        stmt = self.insert(table)
        stmt = stmt.on_conflict_do_update(
            index_elements=keys,
            set_={column.key: stmt.excluded[column.key] for column in table.columns if not column.primary_key},
        )
        session.execute(stmt, rows)

    def set(self, environment_row: EnvironmentRunRow, test_rows: Sequence[TestCaseRow]) -> None:
        session = self.SessionLocal()
        phase = "insert test cases"
        try:
            self._upsert(session, TestCase, [_column_values(TestCase, row) for row in test_rows])
            phase = "insert environment test"
            self._upsert(session, EnvironmentTest, [_column_values(EnvironmentTest, environment_row)])
            phase = "commit"
            session.commit()
        except SQLAlchemyError as e:
            logger.error(f"SQLAlchemyError during {phase}: {e}")
            try:
                session.rollback()
            except SQLAlchemyError as rollback_error:
                raise RollbackError(e, rollback_error, phase) from e
            raise StorageError(f"failed to {phase}: {e}") from e
        finally:
            session.close()
        logger.info(
            f"Stored {environment_row.env_name} at {environment_row.commit_id} "
            f"with {len(test_rows)} test cases"
        )

    def _environment_rows(self, session, env: str = None) -> List[EnvironmentRunRow]:
        query = session.query(EnvironmentTest)
        if env is not None:
            query = query.filter(EnvironmentTest.env_name == env)
        return [EnvironmentRunRow(**_attribute_values(EnvironmentTest, row)) for row in query.all()]

    def _test_rows(self, session, env: str = None, test: str = None) -> List[TestCaseRow]:
        query = session.query(TestCase)
        if env is not None:
            query = query.filter(TestCase.env_name == env)
        if test is not None:
            query = query.filter(TestCase.test_name == test)
        return [TestCaseRow(**_attribute_values(TestCase, row)) for row in query.all()]

    def _read(self, what: str, reader):
        session = self.SessionLocal()
        try:
            return reader(session)
        except SQLAlchemyError as e:
            logger.error(f"SQLAlchemyError while reading {what}: {e}")
            raise StorageError(f"failed to read {what}: {e}") from e
        finally:
            session.close()
