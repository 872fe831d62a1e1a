# maintenance.py
import argparse
import asyncio
import logging
import sys
import uuid
from typing import Optional, Sequence

from mob_maps.config import Settings
from mob_maps.db.database import DataBase
from mob_maps.errors import MobMapsError
from mob_maps.services.leaderboard import LeaderboardService
from mob_maps.services.ownership import OwnershipService

logger = logging.getLogger("mob_maps.maintenance")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mob-maps-admin", description="Mob Maps maintenance tasks")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create missing tables")

    recalc = sub.add_parser("recalc-owners", help="recompute spot owners")
    recalc.add_argument("--spot", type=uuid.UUID, default=None, help="only this spot")

    sub.add_parser("reconcile-votes", help="recount vote_count from the vote ledger")
    sub.add_parser("verify-ownership", help="report spots whose stored owner is stale")

    board = sub.add_parser("leaderboard", help="print a leaderboard")
    board.add_argument("--teams", action="store_true", help="rank teams instead of users")
    board.add_argument("--limit", type=int, default=None)

    return parser


async def run(args: argparse.Namespace) -> int:
    ownership = OwnershipService()

    if args.command == "init-db":
        await DataBase().create_all()
        print("schema is up to date")
    elif args.command == "recalc-owners":
        if args.spot is not None:
            owner = await ownership.recalc_owner(args.spot)
            print(f"{args.spot}: {owner or '-'}")
        else:
            count = await ownership.recalc_all_owners()
            print(f"recalculated {count} spots")
    elif args.command == "reconcile-votes":
        fixed = await ownership.reconcile_vote_counts()
        print(f"fixed {fixed} clips")
    elif args.command == "verify-ownership":
        checks = await ownership.verify_ownership()
        stale = [c for c in checks if not c.correct]
        for c in stale:
            print(f"{c.spot_id}: stored {c.stored_owner_id or '-'} expected {c.expected_owner_id or '-'}")
        print(f"{len(checks) - len(stale)}/{len(checks)} spots correct")
        return 1 if stale else 0
    elif args.command == "leaderboard":
        boards = LeaderboardService()
        if args.teams:
            for pos, row in enumerate(await boards.team_leaderboard(args.limit), start=1):
                print(f"{pos:>3}. {row.team_name} {row.territories_owned} spots, {row.member_count} members")
        else:
            for pos, row in enumerate(await boards.user_leaderboard(args.limit), start=1):
                print(f"{pos:>3}. {row.handle or row.user_id} {row.territories_owned} spots")
    return 0


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return await run(args)
    except MobMapsError as exc:
        logger.error("%s failed: %s", args.command, exc.detail)
        print(exc.user_message(), file=sys.stderr)
        return 1
    finally:
        await DataBase().dispose()


def cli() -> None:
    logging.basicConfig(level=Settings().log_level)
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
