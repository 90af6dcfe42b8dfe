import json
import argparse
from typing import List

from pydantic import TypeAdapter

from testpulse.core.report import generate, persist
from testpulse.db.factory import from_env
from testpulse.schemas import RunMetadata, TestGroup


def load_groups(json_file_path: str) -> List[TestGroup]:
    """
    Load parsed test groups from a JSON file.

    Args:
        json_file_path: Path to a JSON list of test groups

    Returns:
        The validated test groups, in file order
    """
    with open(json_file_path, 'r') as f:
        return TypeAdapter(List[TestGroup]).validate_python(json.load(f))


def main():
    parser = argparse.ArgumentParser(description='Aggregate parsed test results into a report')
    parser.add_argument('input_file', help='Path to the JSON list of test groups')
    parser.add_argument('--name', required=True, help='Environment name of the run')
    parser.add_argument('--details', default='', help='Commit id of the run')
    parser.add_argument('--pr', default='', help='Pull request identifier')
    parser.add_argument('--repo', default='', help='Repository name')
    parser.add_argument('--out_summary', help='Path to save the short summary JSON (optional)')
    parser.add_argument('--out_json', help='Path to save the full report JSON (optional)')
    parser.add_argument('--store', action='store_true', help='Persist the run to the history database')
    parser.add_argument('--db_backend', help='Storage backend, defaults to DB_BACKEND')
    parser.add_argument('--db_path', help='sqlite database path, defaults to DB_PATH')
    parser.add_argument('--db_host', help='postgres host, defaults to DB_HOST')
    parser.add_argument('--use_cloudsql', action='store_true', default=None, help='Connect to a managed postgres instance')
    parser.add_argument('--use_iam_auth', action='store_true', default=None, help='Authenticate with an access token')

    args = parser.parse_args()

    detail = RunMetadata(name=args.name, details=args.details, pr=args.pr, repo_name=args.repo)
    snapshot = generate(detail, load_groups(args.input_file))
    summary = snapshot.short_summary().model_dump_json(by_alias=True, indent=4)

    if args.out_json:
        with open(args.out_json, 'w') as f:
            f.write(snapshot.model_dump_json(indent=2))
    if args.out_summary:
        with open(args.out_summary, 'w') as f:
            f.write(summary)
        print(f"Summary saved to {args.out_summary}")
    else:
        print(summary)

    if args.store:
        gateway = from_env(
            backend=args.db_backend,
            path=args.db_path,
            host=args.db_host,
            use_cloudsql=args.use_cloudsql,
            use_iam_auth=args.use_iam_auth,
        )
        persist(snapshot, gateway)
        print(f"Stored {snapshot.total_tests} tests for {detail.name}")


if __name__ == "__main__":
    main()
