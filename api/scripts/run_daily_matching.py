import argparse
import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from groupmatch.services.orchestrator import run_daily_matching, run_matching_for_slot


def main() -> None:
    parser = argparse.ArgumentParser(description="Run 2+2 group matching for one day or one slot")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="local date (YYYY-MM-DD); defaults to tomorrow")
    parser.add_argument("--slot", type=datetime.fromisoformat, default=None, help="match a single slot (ISO datetime with offset)")
    parser.add_argument("--no-dispatch", action="store_true", help="only enqueue LINE notifications")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if args.slot:
        summary = run_matching_for_slot(args.slot, dispatch=not args.no_dispatch)
    else:
        summary = run_daily_matching(args.date, dispatch=not args.no_dispatch)
    print(json.dumps(summary, ensure_ascii=False, indent=2, default=str))


if __name__ == "__main__":
    main()
