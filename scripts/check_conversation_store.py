#!/usr/bin/env python3
"""
Check connectivity to the conversation store.

Sends the store's connectivity probe and, optionally, lists the stored turns
and latest summary for one user.

Usage:
    python scripts/check_conversation_store.py [--url URL] [--user USER_ID]
"""

import argparse
import asyncio
import sys

from stock_advisor.core.config import get_settings
from stock_advisor.core.exceptions import PersistenceUnavailableError
from stock_advisor.services.conversation_store import HttpConversationStore


async def check_store(url: str, user_id: str | None) -> bool:
    store = HttpConversationStore(url)

    print("=" * 80)
    print(f"Conversation store: {store.base_url}")
    print("=" * 80)

    try:
        result = await store.probe()
        print(f"Probe: OK ({result.get('message', 'no message')})")

        if user_id:
            turns = await store.list_turns(user_id)
            print(f"\nStored turns for {user_id}: {len(turns)}")
            for turn in turns[-10:]:
                print(f"  [{turn.timestamp.isoformat()}] {turn.sender}: {turn.message[:80]}")

            summary = await store.latest_summary(user_id)
            print(f"\nLatest summary: {summary or '(none)'}")

        return True
    except PersistenceUnavailableError as e:
        print(f"Probe FAILED: {e.message}")
        for key, value in e.context.items():
            print(f"  {key}: {value}")
        return False
    finally:
        await store.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Check the conversation store")
    parser.add_argument(
        "--url",
        default=get_settings().conversation_store_url,
        help="Store base URL (defaults to CONVERSATION_STORE_URL)",
    )
    parser.add_argument("--user", help="Also list stored turns for this user id")
    args = parser.parse_args()

    ok = asyncio.run(check_store(args.url, args.user))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
