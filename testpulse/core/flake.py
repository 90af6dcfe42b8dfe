"""Fixed analytical shapes over persisted rows.

A test's flake percentage within a bucket of runs is the share of its
non-skipped runs whose result differs from the most common result in that
bucket. A test that always fails is therefore not flaky, and one that
fails half the time is at 50%.

Recent windows are the 15 days ending at the latest run in the data being
summarized, and growth is the recent value minus the value of the 15 days
before that.
"""

from collections import Counter, defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from testpulse.schemas import (
    SKIP,
    CountsAndDurationsPoint, EnvCharts, EnvFailSummary, EnvironmentRunRow, EnvSummaryRow,
    FlakePoint, Overview, TestCaseRow, TestCharts, TestFlakeRow,
)

WINDOW = timedelta(days=15)


def flake_percentage(results: Iterable[str]) -> float:
    counted = [result for result in results if result != SKIP]
    if not counted:
        return 0.0
    _, most_common = Counter(counted).most_common(1)[0]
    return round(100 * (len(counted) - most_common) / len(counted), 2)


def start_of_day(moment: datetime) -> date:
    return moment.date()


def start_of_week(moment: datetime) -> date:
    day = moment.date()
    return day - timedelta(days=day.weekday())


def _mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def _split_windows(rows, latest: datetime) -> Tuple[list, list]:
    """Split rows into the recent window and the window right before it."""
    recent, previous = [], []
    for row in rows:
        age = latest - row.test_time
        if age < WINDOW:
            recent.append(row)
        elif age < 2 * WINDOW:
            previous.append(row)
    return recent, previous


def _results_by_test(rows: Iterable[TestCaseRow]) -> Dict[str, List[str]]:
    by_test = defaultdict(list)
    for row in rows:
        if row.result == SKIP:
            continue
        by_test[row.test_name].append(row.result)
    return by_test


def flake_series(rows: Iterable[TestCaseRow], bucket: Callable[[datetime], date]) -> List[FlakePoint]:
    """Flake percentage per test and per bucket, ordered by test then date."""
    grouped = defaultdict(list)
    for row in rows:
        if row.result == SKIP:
            continue
        grouped[(row.test_name, bucket(row.test_time))].append(row.result)

    return [
        FlakePoint(
            test_name=test_name,
            start_of_date=start,
            flake_percentage=flake_percentage(results),
            number_of_runs=len(results),
        )
        for (test_name, start), results in sorted(grouped.items())
    ]


def recent_flake_table(test_rows: Sequence[TestCaseRow]) -> List[TestFlakeRow]:
    """Flakiest tests first; only tests that ran in the recent window are listed."""
    if not test_rows:
        return []
    latest = max(row.test_time for row in test_rows)
    recent, previous = _split_windows(test_rows, latest)
    recent_results = _results_by_test(recent)
    previous_results = _results_by_test(previous)

    table = []
    for test_name, results in recent_results.items():
        recent_percentage = flake_percentage(results)
        previous_percentage = flake_percentage(previous_results.get(test_name, []))
        table.append(TestFlakeRow(
            test_name=test_name,
            recent_flake_percentage=recent_percentage,
            growth_rate=round(recent_percentage - previous_percentage, 2),
        ))
    table.sort(key=lambda row: (-row.recent_flake_percentage, -row.growth_rate, row.test_name))
    return table


def counts_and_durations(environment_rows: Iterable[EnvironmentRunRow]) -> List[CountsAndDurationsPoint]:
    by_day = defaultdict(list)
    for row in environment_rows:
        by_day[start_of_day(row.test_time)].append(row)

    return [
        CountsAndDurationsPoint(
            start_of_date=day,
            number_of_runs=len(runs),
            avg_number_of_tests=_mean([run.number_of_tests for run in runs]),
            avg_duration=_mean([run.total_duration for run in runs]),
        )
        for day, runs in sorted(by_day.items())
    ]


def env_charts(environment_rows: Sequence[EnvironmentRunRow], test_rows: Sequence[TestCaseRow],
               tests_in_top: int) -> EnvCharts:
    """Charts for one environment; both row lists must already be narrowed to it."""
    top = recent_flake_table(test_rows)[:tests_in_top]
    top_names = {row.test_name for row in top}
    top_rows = [row for row in test_rows if row.test_name in top_names]

    return EnvCharts(
        recent_flake_percent_table=top,
        flake_rate_by_week=flake_series(top_rows, start_of_week),
        flake_rate_by_day=flake_series(top_rows, start_of_day),
        counts_and_durations=counts_and_durations(environment_rows),
    )


def test_charts(test_rows: Sequence[TestCaseRow]) -> TestCharts:
    """Charts for one test in one environment."""
    return TestCharts(
        flake_by_day=flake_series(test_rows, start_of_day),
        flake_by_week=flake_series(test_rows, start_of_week),
    )


def overview(environment_rows: Sequence[EnvironmentRunRow], test_rows: Sequence[TestCaseRow]) -> Overview:
    if not environment_rows:
        return Overview()
    latest = max(row.test_time for row in environment_rows)

    runs_by_env = defaultdict(list)
    for row in environment_rows:
        runs_by_env[row.env_name].append(row)
    tests_by_env = defaultdict(list)
    for row in test_rows:
        tests_by_env[row.env_name].append(row)

    avg_fail = []
    table = []
    for env_name, runs in runs_by_env.items():
        recent_runs, previous_runs = _split_windows(runs, latest)
        recent_fails = _mean([run.number_of_fail for run in recent_runs])
        previous_fails = _mean([run.number_of_fail for run in previous_runs])
        avg_fail.append(EnvFailSummary(
            env_name=env_name,
            recent_number_of_fail=recent_fails,
            growth_rate=round(recent_fails - previous_fails, 2),
        ))

        recent_tests, previous_tests = _split_windows(tests_by_env[env_name], latest)
        recent_flake = _mean([flake_percentage(r) for r in _results_by_test(recent_tests).values()])
        previous_flake = _mean([flake_percentage(r) for r in _results_by_test(previous_tests).values()])
        table.append(EnvSummaryRow(
            env_name=env_name,
            number_of_runs=len(runs),
            last_run=max(run.test_time for run in runs),
            recent_flake_percentage=recent_flake,
            growth_rate=round(recent_flake - previous_flake, 2),
        ))

    avg_fail.sort(key=lambda row: (-row.recent_number_of_fail, row.env_name))
    table.sort(key=lambda row: (-row.recent_flake_percentage, row.env_name))
    return Overview(summary_avg_fail=avg_fail, summary_table=table)
