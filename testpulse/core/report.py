from datetime import datetime, timezone
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from testpulse.core.config import settings, logger
from testpulse.schemas import (
    PASS, FAIL, SKIP, RESULT_TYPES, as_utc,
    EnvironmentRunRow, RunMetadata, ShortSummary, TestCaseRow, TestGroup, TestRecord,
)


class ReportSnapshot(BaseModel):
    """The result of one test run, built once by `generate` and only read afterwards.

    `results` is a read-only view keyed by pass, fail and skip, each bucket
    in the order the tests were encountered.
    """

    model_config = ConfigDict(frozen=True)

    passed: Tuple[TestRecord, ...] = ()
    failed: Tuple[TestRecord, ...] = ()
    skipped: Tuple[TestRecord, ...] = ()
    total_tests: int
    total_duration: float
    version: str
    build: str
    created_on: datetime
    detail: RunMetadata
    test_time: datetime

    @property
    def results(self) -> Mapping[str, Tuple[TestRecord, ...]]:
        return MappingProxyType({PASS: self.passed, FAIL: self.failed, SKIP: self.skipped})

    @property
    def build_version(self) -> str:
        return f"{self.version}_{self.build}"

    def short_summary(self, include_skip_durations: bool = False) -> ShortSummary:
        """Compact summary with test names and durations, no logs.

        Skipped tests report close to zero seconds, so they are left out of
        `durations` unless `include_skip_durations` is set.
        """
        passed, failed, skipped = self.passed, self.failed, self.skipped

        durations = {}
        for record in passed + failed:
            durations[record.test_name] = record.duration
        if include_skip_durations:
            for record in skipped:
                durations[record.test_name] = record.duration

        return ShortSummary(
            number_of_tests=len(passed) + len(failed) + len(skipped),
            number_of_fail=len(failed),
            number_of_pass=len(passed),
            number_of_skip=len(skipped),
            failed_tests=[r.test_name for r in failed],
            passed_tests=[r.test_name for r in passed],
            skipped_tests=[r.test_name for r in skipped],
            durations=durations,
            total_duration=self.total_duration,
            version=self.version,
            build=self.build,
            detail=self.detail,
        )

    def db_rows(self, report_time: Optional[datetime] = None) -> Tuple[EnvironmentRunRow, List[TestCaseRow]]:
        """Rows to persist for this run: one environment row plus one row per test."""
        if report_time is None:
            report_time = datetime.now(timezone.utc)

        test_rows = []
        for result_type in RESULT_TYPES:
            for record in self.results[result_type]:
                test_rows.append(TestCaseRow(
                    pr=self.detail.pr,
                    commit_id=self.detail.details,
                    test_name=record.test_name,
                    result=result_type,
                    duration=record.duration,
                    env_name=self.detail.name,
                    test_order=record.order,
                    test_time=self.test_time,
                ))

        environment_row = EnvironmentRunRow(
            commit_id=self.detail.details,
            env_name=self.detail.name,
            report_time=report_time,
            test_time=self.test_time,
            number_of_fail=len(self.results[FAIL]),
            number_of_pass=len(self.results[PASS]),
            number_of_skip=len(self.results[SKIP]),
            total_duration=self.total_duration,
            report_version=self.build_version,
        )
        return environment_row, test_rows


def generate(detail: RunMetadata, groups: Sequence[TestGroup], now: Optional[datetime] = None) -> ReportSnapshot:
    """Aggregate the groups of one run into a ReportSnapshot.

    Every group takes an order slot, hidden ones included, so the order of
    visible tests stays stable when the hidden set changes between runs.
    Groups with a status other than pass, fail or skip are dropped.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    now = as_utc(now)

    if groups:
        start_time, end_time = groups[0].start, groups[0].end
    else:
        start_time = end_time = now

    visible = []
    order = 0
    for group in groups:
        order += 1
        if group.start < start_time:
            start_time = group.start
        if group.end > end_time:
            end_time = group.end
        if group.hidden:
            continue
        if group.status not in RESULT_TYPES:
            logger.debug(f"Ignoring {group.test_name} with unknown status {group.status!r}")
            continue
        visible.append((group, order, group.events[-1].elapsed))

    buckets = {result_type: [] for result_type in RESULT_TYPES}
    for group, test_order, duration in visible:
        buckets[group.status].append(TestRecord(
            test_name=group.test_name,
            status=group.status,
            duration=duration,
            order=test_order,
            env_name=detail.name,
            test_time=start_time,
        ))

    return ReportSnapshot(
        passed=tuple(buckets[PASS]),
        failed=tuple(buckets[FAIL]),
        skipped=tuple(buckets[SKIP]),
        total_tests=sum(len(records) for records in buckets.values()),
        total_duration=round((end_time - start_time).total_seconds(), 2),
        version=settings.VERSION,
        build=settings.BUILD,
        created_on=now,
        detail=detail,
        test_time=start_time,
    )


def persist(snapshot: ReportSnapshot, gateway) -> None:
    """Store a snapshot's rows through a storage gateway."""
    gateway.initialize()
    environment_row, test_rows = snapshot.db_rows()
    gateway.set(environment_row, test_rows)
