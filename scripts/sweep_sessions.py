from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from attendance_engine.core.event_bus import SessionEventBus
from attendance_engine.db import session_scope
from attendance_engine.services.session_sweep_service import close_overdue_sessions


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('sweep_sessions')


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description='Close ongoing sessions that ran past their end time.')
    parser.add_argument('--grace-minutes', type=int, default=None)
    args = parser.parse_args(argv)

    # Out-of-process run: no connected subscribers, events are only logged.
    bus = SessionEventBus()
    with session_scope() as db:
        result = close_overdue_sessions(db, bus=bus, grace_minutes=args.grace_minutes)
    logger.info('sweep finished %s', result)
    return 0


if __name__ == '__main__':
    sys.exit(main())
