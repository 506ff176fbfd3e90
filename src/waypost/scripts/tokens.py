# src/waypost/scripts/tokens.py
"""Issue a client API bearer token for a local actor."""
from __future__ import annotations

import argparse
import sys

from waypost.core.exceptions import ActorNotFound
from waypost.core.security import create_access_token
from waypost.db.session import SessionLocal
from waypost.services.resolver import ActorResolver


def main() -> None:
    parser = argparse.ArgumentParser(description="Print a bearer token for a local actor")
    parser.add_argument("actor", help="Username or actor URI")
    args = parser.parse_args()

    with SessionLocal() as db:
        try:
            actor = ActorResolver().resolve_local(db, args.actor)
        except ActorNotFound:
            print(f"[tokens] ERROR: no local actor {args.actor!r}", file=sys.stderr)
            sys.exit(1)
        print(create_access_token(actor.id))


if __name__ == "__main__":
    main()
