"""Delete one Discord server and everything the bot stored for it.

Removes the server row; channel groups, races, tracked messages and
submissions go with it through ON DELETE CASCADE. Use this after the
bot has been removed from a server.

Usage:
    # Dry run (default, shows what would be deleted, changes nothing):
    python scripts/purge_server.py <server_id>

    # Apply:
    python scripts/purge_server.py <server_id> --apply
"""

from __future__ import annotations

import asyncio
import os
import sys

from murahdahla.db.engine import create_engine, get_session
from murahdahla.db.repository import Repository


async def purge_server(server_id: int, apply: bool = False) -> None:
    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        print("ERROR: DATABASE_URL not set.")
        sys.exit(1)

    engine = create_engine(db_url)

    async with get_session(engine) as session:
        repo = Repository(session)

        server = await repo.get_server(server_id)
        if server is None:
            print(f"No server {server_id} in the database.")
            await engine.dispose()
            return

        groups = await repo.get_groups_for_server(server_id)
        race_count = 0
        submission_count = 0
        for group in groups:
            races = await repo.get_races_for_group(group.id)
            race_count += len(races)
            for race in races:
                submission_count += len(await repo.get_submissions(race.race_id))
            print(f"  group {group.name}: {len(races)} races")

        print()
        print(f"Server:       {server_id} (owner={server.owner_id})")
        print(f"Groups:       {len(groups)}")
        print(f"Races:        {race_count}")
        print(f"Submissions:  {submission_count}")

        if apply:
            await repo.purge_server(server_id)
            print("\nDeleted.")
        else:
            print("\nRun with --apply to delete.")

    await engine.dispose()


def main() -> None:
    args = [a for a in sys.argv[1:] if a != "--apply"]
    if len(args) != 1 or not args[0].isdigit():
        print("usage: python scripts/purge_server.py <server_id> [--apply]")
        sys.exit(2)
    asyncio.run(purge_server(int(args[0]), apply="--apply" in sys.argv))


if __name__ == "__main__":
    main()
