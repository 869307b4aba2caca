"""
Database initialization script

Creates the tables and optionally seeds the default providers.
"""
import asyncio
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import inspect
from orchestrator.core.config import settings
from orchestrator.core.database import Database
from orchestrator.core.logger import get_logger
from orchestrator.services.orchestrator import PROVIDER_TYPES_WITH_KEYS
from orchestrator.services.registry import ProviderRegistry

logger = get_logger(__name__)


async def check_tables_exist(database: Database):
    """List the tables currently in the database."""
    async with database.engine.begin() as conn:
        def _check(connection):
            inspector = inspect(connection)
            return inspector.get_table_names()
        
        return await conn.run_sync(_check)


async def seed_providers(database: Database) -> int:
    """Insert the default providers unless providers already exist."""
    credentials = {}
    for provider_type in PROVIDER_TYPES_WITH_KEYS:
        credential = settings.startup_credential(provider_type)
        if credential is not None:
            credentials[provider_type] = credential
    registry = ProviderRegistry(
        database.session_factory,
        startup_credentials=credentials,
        ollama_base_url=settings.ollama_base_url,
    )
    return await registry.seed_defaults()


async def main():
    import argparse
    
    parser = argparse.ArgumentParser(description="Database initialization tool")
    parser.add_argument(
        "action",
        choices=["init", "reset", "check", "seed"],
        help="init=create tables, reset=drop and recreate, check=list tables, seed=add default providers"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Skip the confirmation prompt for reset"
    )
    
    args = parser.parse_args()
    database = Database(settings.database_url)
    logger.info("Database tool started", action=args.action)
    
    try:
        if args.action == "check":
            tables = await check_tables_exist(database)
            print(f"\nTables in database ({len(tables)}):")
            for table in tables:
                print(f"  - {table}")
            print()
        
        elif args.action == "init":
            await database.init()
            print("\nDatabase tables created")
            print("Hint: run 'python scripts/init_db.py seed' to add the default providers")
        
        elif args.action == "reset":
            if not args.force:
                print("\nWARNING: this deletes all data!")
                confirm = input("Reset the database? (type 'yes' to confirm): ")
                if confirm.lower() != "yes":
                    print("Cancelled")
                    return
            await database.drop()
            await database.init()
            print("\nDatabase reset")
        
        elif args.action == "seed":
            await database.init()
            count = await seed_providers(database)
            print(f"\n{count} providers in registry")
            print("Note: seeded providers without an API key stay disabled")
    finally:
        await database.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nCancelled")
    except Exception as e:
        logger.error(f"Execution failed: {str(e)}", exc_info=True)
        sys.exit(1)
