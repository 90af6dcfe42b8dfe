from sqlalchemy import Column, String, Integer, Float
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator
from datetime import datetime

from testpulse.schemas import as_utc

Base = declarative_base()


class TextTimestamp(TypeDecorator):
    """Datetime stored as ISO-8601 text so every backend shares one encoding.

    Values are always written and read back timezone-aware, naive ones as UTC.
    """

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value).isoformat()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(datetime.fromisoformat(value))


class EnvironmentTest(Base):
    __tablename__ = "db_environment_tests"

    commit_id = Column("CommitID", String, primary_key=True)
    env_name = Column("EnvName", String, primary_key=True)
    report_time = Column("ReportTime", TextTimestamp)
    test_time = Column("TestTime", TextTimestamp)
    number_of_fail = Column("NumberOfFail", Integer, default=0)
    number_of_pass = Column("NumberOfPass", Integer, default=0)
    number_of_skip = Column("NumberOfSkip", Integer, default=0)
    total_duration = Column("TotalDuration", Float, default=0.0)
    report_version = Column("ReportVersion", String)


class TestCase(Base):
    __tablename__ = "db_test_cases"
    __test__ = False

    pr = Column("PR", String)
    commit_id = Column("CommitId", String, primary_key=True)
    test_name = Column("TestName", String, primary_key=True)
    result = Column("Result", String)
    duration = Column("Duration", Float, default=0.0)
    env_name = Column("EnvName", String, primary_key=True)
    test_order = Column("TestOrder", Integer)
    test_time = Column("TestTime", TextTimestamp)
