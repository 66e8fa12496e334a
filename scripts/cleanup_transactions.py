# scripts/cleanup_transactions.py
"""
Script to fail payment transactions left pending by abandoned checkouts
"""
import asyncio
import os
import sys
import argparse

# Add parent directory to path so we can import storefront modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from storefront.core.config import settings
from storefront.core.utils import fail_stale_transactions

async def cleanup_transactions(minutes: int):
    count = await fail_stale_transactions(minutes)
    print(f"Marked {count} transactions pending for more than {minutes} minutes as failed")

def main():
    parser = argparse.ArgumentParser(description="Fail stale pending transactions")
    parser.add_argument(
        "--minutes",
        type=int,
        default=settings.STALE_TRANSACTION_MINUTES,
        help="Age in minutes after which a pending transaction is considered abandoned",
    )

    args = parser.parse_args()

    asyncio.run(cleanup_transactions(args.minutes))

if __name__ == "__main__":
    main()
