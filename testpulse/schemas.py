from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Dict, Optional
from datetime import date, datetime, timezone

PASS = "pass"
FAIL = "fail"
SKIP = "skip"
RESULT_TYPES = (PASS, FAIL, SKIP)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken to be UTC so every stored time compares."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CamelModel(BaseModel):
    """Response models keep their documented camel-case JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Ingestion input, produced by an external test-result parser

class TestEvent(BaseModel):
    time: Optional[datetime] = None
    action: str = ""
    test: str = ""
    elapsed: float = 0.0
    output: str = ""

    @field_validator("time")
    @classmethod
    def to_utc(cls, value):
        return as_utc(value)


class TestGroup(BaseModel):
    """All events emitted for a single test within one run."""

    test_name: str
    status: str
    events: List[TestEvent] = Field(min_length=1)
    start: datetime
    end: datetime
    hidden: bool = False

    @field_validator("start", "end")
    @classmethod
    def to_utc(cls, value):
        return as_utc(value)


class RunMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str  # environment name
    details: str = ""  # commit id
    pr: str = ""
    repo_name: str = ""


class ReportRequest(BaseModel):
    detail: RunMetadata
    groups: List[TestGroup] = []


# Aggregated values

class TestRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_name: str
    status: str
    duration: float
    order: int
    env_name: str
    test_time: datetime


class ShortSummary(CamelModel):
    number_of_tests: int = 0
    number_of_fail: int = 0
    number_of_pass: int = 0
    number_of_skip: int = 0
    failed_tests: List[str] = []
    passed_tests: List[str] = []
    skipped_tests: List[str] = []
    durations: Dict[str, float] = {}
    total_duration: float = 0.0
    version: str = ""
    build: str = ""
    detail: RunMetadata


# Persisted rows

class EnvironmentRunRow(CamelModel):
    commit_id: str
    env_name: str
    report_time: datetime
    test_time: datetime
    number_of_fail: int = 0
    number_of_pass: int = 0
    number_of_skip: int = 0
    total_duration: float = 0.0
    report_version: str = ""

    @field_validator("report_time", "test_time")
    @classmethod
    def to_utc(cls, value):
        return as_utc(value)

    @property
    def number_of_tests(self) -> int:
        return self.number_of_fail + self.number_of_pass + self.number_of_skip


class TestCaseRow(CamelModel):
    pr: str = ""
    commit_id: str
    test_name: str
    result: str
    duration: float = 0.0
    env_name: str
    test_order: int = 0
    test_time: datetime

    @field_validator("test_time")
    @classmethod
    def to_utc(cls, value):
        return as_utc(value)


# Analytical query results

class EnvFailSummary(CamelModel):
    env_name: str
    recent_number_of_fail: float
    growth_rate: float


class EnvSummaryRow(CamelModel):
    env_name: str
    number_of_runs: int
    last_run: datetime
    recent_flake_percentage: float
    growth_rate: float


class TestFlakeRow(CamelModel):
    test_name: str
    recent_flake_percentage: float
    growth_rate: float


class FlakePoint(CamelModel):
    test_name: str
    start_of_date: date
    flake_percentage: float
    number_of_runs: int


class CountsAndDurationsPoint(CamelModel):
    start_of_date: date
    number_of_runs: int
    avg_number_of_tests: float
    avg_duration: float


class Overview(CamelModel):
    supported: bool = True
    summary_avg_fail: List[EnvFailSummary] = []
    summary_table: List[EnvSummaryRow] = []


class EnvCharts(CamelModel):
    supported: bool = True
    recent_flake_percent_table: List[TestFlakeRow] = []
    flake_rate_by_week: List[FlakePoint] = []
    flake_rate_by_day: List[FlakePoint] = []
    counts_and_durations: List[CountsAndDurationsPoint] = []


class TestCharts(CamelModel):
    supported: bool = True
    flake_by_day: List[FlakePoint] = []
    flake_by_week: List[FlakePoint] = []


class EnvironmentTestsAndTestCases(CamelModel):
    supported: bool = True
    environment_tests: List[EnvironmentRunRow] = []
    test_cases: List[TestCaseRow] = []

