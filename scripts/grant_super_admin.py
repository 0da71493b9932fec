#!/usr/bin/env python3
"""Grant platform super_admin to an existing user.

Super admins can act on every team and impersonate users, so no API route
creates them. The user must not belong to a team yet; their super_admin
membership row is attached to the given (platform) team.
"""

import argparse
import logging
import sys

from team_auth.config import settings
from team_auth.database import SessionLocal, atomic
from team_auth.identity.local_provider import LocalIdentityProvider
from team_auth.repositories.team_membership_repository import TeamMembershipRepository
from team_auth.repositories.team_repository import TeamRepository

logger = logging.getLogger("team_auth.scripts.grant_super_admin")


def main() -> int:
    parser = argparse.ArgumentParser(description="Grant super_admin to a user")
    parser.add_argument("--email", required=True, help="E-mail of the user to promote")
    parser.add_argument("--team-id", required=True, help="Team the super_admin row is attached to")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    db = SessionLocal()
    try:
        user = LocalIdentityProvider(db).get_user_by_email(args.email)
        if user is None:
            logger.error("No user with e-mail %s", args.email)
            return 1
        if TeamRepository(db).get_by_id(args.team_id) is None:
            logger.error("Team %s not found", args.team_id)
            return 1

        with atomic(db):
            TeamMembershipRepository(db).create_super_admin(args.team_id, user.id)
    finally:
        db.close()

    logger.info("User %s is now a super_admin", user.id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
