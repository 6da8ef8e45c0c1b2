"""Command-line entry point for the session wallet."""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from sessionwallet.config import get_settings
from sessionwallet.factory import close_session, create_session
from sessionwallet.pipeline.actions import ActionKind
from sessionwallet.session import SessionController, SessionStatus

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sessionwallet", description="Session wallet for on-chain game actions")
    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init", help="Load or create the session wallet of an owner")
    init.add_argument("owner", help="Owner address")

    reset = commands.add_parser("reset", help="Delete the session wallet of an owner")
    reset.add_argument("owner", help="Owner address")

    status = commands.add_parser("status", help="Show balance and readiness")
    status.add_argument("owner", help="Owner address")

    play = commands.add_parser("play", help="Submit one game action")
    play.add_argument("owner", help="Owner address")
    play.add_argument("action", help=f"One of: {', '.join(k.value for k in ActionKind)}")
    play.add_argument("--data", type=str, default="{}", help="JSON payload for the action")

    score = commands.add_parser("score", help="Save a finished game to the leaderboard")
    score.add_argument("owner", help="Owner address")
    score.add_argument("score", type=int, help="Final score")
    score.add_argument("--level", type=int, default=1, help="Level reached")
    score.add_argument("--blocks", type=int, default=0, help="Blocks placed")

    board = commands.add_parser("leaderboard", help="Show the top scores")
    board.add_argument("--limit", type=int, default=10, help="Entries to show")

    return parser


def print_status(status: SessionStatus) -> None:
    print(f"Owner:        {status.owner}")
    print(f"Address:      {status.address}")
    print(f"Balance:      {status.balance}")
    print(f"Ready:        {'yes' if status.is_ready else 'no (fund the address above)'}")
    print(f"Transactions: {status.totals.transactions}")
    print(f"Spent:        {status.totals.spent}")
    if status.last_tx_hash:
        print(f"Last tx:      {status.last_tx_hash}")
    if status.last_error:
        print(f"Last error:   {status.last_error}")


async def _init(session: SessionController, owner: str) -> Optional[str]:
    address = await session.init_identity(owner)
    if address is None:
        print(f"Failed: {session.get_status().last_error}")
    return address


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    session = create_session(settings)

    try:
        if args.command == "leaderboard":
            entries = await session.leaderboard.entries()
            if not entries:
                print("Leaderboard is empty")
            for position, entry in enumerate(entries[: args.limit], start=1):
                print(f"{position:>3}. {entry.owner_key}  score={entry.score}  level={entry.level}")
            return 0

        if args.command == "reset":
            await session.reset_identity(args.owner)
            error = session.get_status().last_error
            if error:
                print(f"Failed: {error}")
                return 1
            print(f"Session wallet of {args.owner} deleted")
            return 0

        if await _init(session, args.owner) is None:
            return 1

        if args.command == "play":
            try:
                payload = json.loads(args.data)
            except json.JSONDecodeError as e:
                print(f"Invalid --data: {e}")
                return 2
            ok = await session.execute_action(args.action, payload)
            print_status(session.get_status())
            return 0 if ok else 1

        if args.command == "score":
            rank = await session.record_score(args.score, level=args.level, blocks_placed=args.blocks)
            if rank is None:
                print(f"Failed: {session.get_status().last_error}")
                return 1
            print(f"Score saved, rank #{rank}")
            return 0

        print_status(session.get_status())
        return 0
    finally:
        await close_session(session)


def main():
    """Main entry point."""
    args = build_parser().parse_args()
    settings = get_settings()

    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        sys.exit(130)


if __name__ == "__main__":
    main()
