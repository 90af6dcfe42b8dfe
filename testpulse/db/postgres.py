from sqlalchemy import create_engine
from sqlalchemy.dialects.postgresql import insert as postgresql_insert

from testpulse.core.config import settings, logger
from testpulse.core import flake
from testpulse.db.base import SQLGateway
from testpulse.schemas import EnvCharts, EnvironmentTestsAndTestCases, Overview, TestCharts


def create_pooled_engine(connection_string: str, **kwargs):
    # Create engine with connection pooling
    return create_engine(
        connection_string,
        pool_size=20,
        max_overflow=20,
        pool_timeout=60,
        pool_recycle=3600,
        pool_pre_ping=True,
        **kwargs
    )


class PostgresGateway(SQLGateway):
    name = "postgres"
    supports_analytics = True
    insert = staticmethod(postgresql_insert)

    def __init__(self, host: str = "", engine=None, config=None):
        config = config or settings
        if engine is None:
            config = config.model_copy(update={"DB_HOST": host or config.DB_HOST})
            logger.info(f"Connecting to postgres at {config.DB_HOST}:{config.DB_PORT}/{config.DB_NAME}")
            engine = create_pooled_engine(config.DB_CONNECTION_STRING())
        super().__init__(engine)

    def get_overview(self) -> Overview:
        return self._read("overview", lambda session: flake.overview(
            self._environment_rows(session), self._test_rows(session)))

    def get_env_charts(self, env: str, tests_in_top: int) -> EnvCharts:
        return self._read(f"environment charts for {env}", lambda session: flake.env_charts(
            self._environment_rows(session, env), self._test_rows(session, env), tests_in_top))

    def get_test_charts(self, env: str, test: str) -> TestCharts:
        return self._read(f"test charts for {test} in {env}", lambda session: flake.test_charts(
            self._test_rows(session, env, test)))

    def get_environment_tests_and_test_cases(self) -> EnvironmentTestsAndTestCases:
        return self._read("environment tests and test cases", lambda session: EnvironmentTestsAndTestCases(
            environment_tests=self._environment_rows(session),
            test_cases=self._test_rows(session),
        ))
