from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv


async def provision(db_path: str, database: str | None, container: str | None) -> str:
    from docrepo.config.settings import load_settings
    from docrepo.infrastructure.partition_keys import PartitionKeyStrategy
    from docrepo.logging_config import get_logger
    from docrepo.repositories.provisioning import ContainerProvisioner
    from docrepo.store.sqlite import SqliteStoreClient

    load_dotenv()
    env = dict(os.environ)
    if database:
        env["DOCREPO_DATABASE_NAME"] = database
    if container:
        env["DOCREPO_CONTAINER_NAME"] = container
    get_logger()
    settings = load_settings(env).model_copy(update={"create_structures": True})
    keys = PartitionKeyStrategy(settings.partition_key, settings.hierarchical_partition_key)

    client = SqliteStoreClient.connect(db_path)
    try:
        await ContainerProvisioner(client, settings, keys.container_key_paths).initialize()
    finally:
        client.close()
    return f"{settings.database_name}/{settings.container_name} ({','.join(keys.container_key_paths)})"


def main(argv: list[str] | None = None) -> int:
    # Ensure project root (containing 'docrepo') is importable
    project_root = Path(__file__).resolve().parents[1]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))

    parser = argparse.ArgumentParser(description="Provision database and container in a SQLite store")
    parser.add_argument(
        "--db",
        default=os.path.join("data", "docrepo.sqlite3"),
        help="Path to SQLite DB file (will be created if missing)",
    )
    parser.add_argument("--database", help="Database name (default: DOCREPO_DATABASE_NAME)")
    parser.add_argument("--container", help="Container name (default: DOCREPO_CONTAINER_NAME)")
    args = parser.parse_args(argv)

    db_path = os.path.abspath(args.db)
    os.makedirs(os.path.dirname(db_path), exist_ok=True)

    target = asyncio.run(provision(db_path, args.database, args.container))
    print(f"Provisioned {target} at: {db_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
