# src/waypost/scripts/create_actor.py
"""Create a local actor with a fresh RSA key pair."""
from __future__ import annotations

import argparse
import sys

from waypost.db.session import SessionLocal
from waypost.services.actors import create_local_actor


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a local Waypost actor")
    parser.add_argument("username")
    parser.add_argument("--display-name", default=None)
    parser.add_argument("--summary", default=None)
    args = parser.parse_args()

    with SessionLocal() as db:
        try:
            actor = create_local_actor(
                db,
                args.username,
                display_name=args.display_name,
                summary=args.summary,
            )
        except ValueError as exc:
            print(f"[create_actor] ERROR: {exc}", file=sys.stderr)
            sys.exit(1)
        print(f"{actor.actor_uri} (id={actor.id})")


if __name__ == "__main__":
    main()
