#!/usr/bin/env python3
"""
mint_invite.py

Create an invite code directly in Firestore, e.g. the very first one for a
project that has no users yet.

Usage:
    export FIREBASE_SERVICE_ACCOUNT_PATH="/path/to/serviceAccountKey.json"
    python mint_invite.py            # one code
    python mint_invite.py --count 3  # several codes
"""
import argparse
import asyncio
import logging
import sys

from orderboard.firebase_client import FirebaseClient, FirebaseClientError
from orderboard.invites import create_invite
from orderboard.settings import load_settings
from orderboard.store import FirestoreCollection


async def _mint(collection: FirestoreCollection, count: int, length: int):
    codes = []
    for _ in range(count):
        codes.append(await create_invite(collection, length))
    return codes


def main():
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Mint invite codes for the order board")
    parser.add_argument("--count", type=int, default=1, help="How many codes to create (default: 1)")
    parser.add_argument("--length", type=int, default=settings.invite_code_length,
                        help=f"Code length (default: {settings.invite_code_length})")
    parser.add_argument("--collection", default=settings.invites_collection,
                        help=f"Invites collection (default: {settings.invites_collection})")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    if not settings.firebase_configured:
        print("Set FIREBASE_SERVICE_ACCOUNT_PATH or FIREBASE_SERVICE_ACCOUNT_JSON first.")
        sys.exit(2)

    client = FirebaseClient()
    try:
        client.init_app(
            service_account_path=settings.service_account_path,
            service_account_json=settings.service_account_json,
            project_id=settings.project_id,
        )
    except FirebaseClientError as e:
        print("Firebase init failed:", e)
        sys.exit(1)

    try:
        codes = asyncio.run(_mint(FirestoreCollection(client, args.collection), args.count, args.length))
    finally:
        client.close()

    for code in codes:
        print(code)


if __name__ == "__main__":
    main()
