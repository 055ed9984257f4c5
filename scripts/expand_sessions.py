from __future__ import annotations

import argparse
import logging
import sys
from datetime import date, timedelta
from pathlib import Path


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from attendance_engine.core.time_provider import default_time_provider
from attendance_engine.db import session_scope
from attendance_engine.services.session_store_service import expand_schedule_for_date


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('expand_sessions')


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description='Expand recurring schedule slots into dated class sessions.')
    parser.add_argument('--start', type=date.fromisoformat, default=None, help='first date (YYYY-MM-DD), default today')
    parser.add_argument('--days', type=int, default=1, help='number of consecutive days to expand')
    args = parser.parse_args(argv)

    start = args.start or default_time_provider.today()
    with session_scope() as db:
        for offset in range(max(1, args.days)):
            result = expand_schedule_for_date(db, start + timedelta(days=offset))
            logger.info('expanded %s', result)
    return 0


if __name__ == '__main__':
    sys.exit(main())
