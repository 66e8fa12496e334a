# scripts/reset_database.py
"""
Script to completely reset the database
WARNING: This will delete all data in the database!
"""
import asyncio
import asyncpg
import sys
import os
import argparse

# Add parent directory to path so we can import storefront modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from storefront.core.config import settings
from storefront.core.database import create_tables

async def reset_database(confirm=False, recreate_tables=False):
    if not confirm:
        print("WARNING: This will DELETE ALL orders, transactions, carts and notifications!")
        print("To confirm, run with --confirm flag.")
        return

    db_parts = settings.DATABASE_URL.split('/')
    db_name = db_parts[-1]

    # Admin operations run against the maintenance database
    admin_conn_string = '/'.join(db_parts[:-1]) + '/postgres'

    try:
        conn = await asyncpg.connect(admin_conn_string)

        try:
            await conn.execute(f"""
            SELECT pg_terminate_backend(pg_stat_activity.pid)
            FROM pg_stat_activity
            WHERE pg_stat_activity.datname = '{db_name}'
              AND pid <> pg_backend_pid();
            """)

            print(f"Dropping database {db_name}...")
            await conn.execute(f"DROP DATABASE IF EXISTS {db_name};")
            print(f"Creating database {db_name}...")
            await conn.execute(f"CREATE DATABASE {db_name};")
            print("Database reset complete.")
        finally:
            await conn.close()

        if recreate_tables:
            print("Creating tables and default payment settings...")
            await create_tables()
            print("Tables created.")
        else:
            print("\nNOTE: Tables are created again on the next application start.")

    except Exception as e:
        print(f"Error resetting database: {e}")
        sys.exit(1)

def main():
    parser = argparse.ArgumentParser(description="Reset the storefront database")
    parser.add_argument("--confirm", action="store_true", help="Confirm database reset")
    parser.add_argument("--create-tables", action="store_true", help="Recreate tables right after the reset")

    args = parser.parse_args()

    asyncio.run(reset_database(args.confirm, args.create_tables))

if __name__ == "__main__":
    main()
