import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from groupmatch.config import LINE_DISPATCH_LIMIT
from groupmatch.services.notifications import dispatch_line_notifications


def main() -> None:
    parser = argparse.ArgumentParser(description="Deliver due LINE notifications")
    parser.add_argument("--limit", type=int, default=LINE_DISPATCH_LIMIT)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    summary = dispatch_line_notifications(args.limit)
    print(json.dumps(summary, ensure_ascii=False, indent=2, default=str))


if __name__ == "__main__":
    main()
