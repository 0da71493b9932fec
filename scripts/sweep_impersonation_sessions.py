#!/usr/bin/env python3
"""Impersonation session sweep for Team Auth.

Closes open impersonation sessions whose expiry has passed, stamping
ended_at with the expiry time. Reads already treat such sessions as ended;
the sweep only makes the audit rows final. Safe to run from cron at any
interval.
"""

import argparse
import logging
import sys

from team_auth.config import settings
from team_auth.database import SessionLocal
from team_auth.identity.local_provider import LocalIdentityProvider
from team_auth.services.impersonation_service import ImpersonationService

logger = logging.getLogger("team_auth.scripts.sweep")


def main() -> int:
    parser = argparse.ArgumentParser(description="Close expired impersonation sessions")
    parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    db = SessionLocal()
    try:
        swept = ImpersonationService(db, LocalIdentityProvider(db)).sweep_expired_sessions()
    finally:
        db.close()

    logger.info("Closed %d expired impersonation session(s)", swept)
    return 0


if __name__ == "__main__":
    sys.exit(main())
