"""Practical-application deadline alert runner.

Safe to run from cron: alerts are marked sent once delivered, so a second
run in the same window finds nothing to do.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from gameia.database import WriteSessionLocal
from gameia.apps.notifications import alerts as notification_alerts


def run() -> dict:
    db = WriteSessionLocal()
    try:
        # process_due_alerts commits each alert on its own.
        return notification_alerts.process_due_alerts(db, now=datetime.now(timezone.utc))
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    result = run()
    print("Application alert runner completed:", result)
