"""
One-shot sync between the local CRM document and the remote database.

Usage:
    python scripts/sync_remote.py status
    python scripts/sync_remote.py push
    python scripts/sync_remote.py pull [--strategy merge|replace]
    python scripts/sync_remote.py export backup.json
    python scripts/sync_remote.py import backup.json
"""
import sys
import os
import asyncio
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from shopcrm.config import settings
from shopcrm.logging import setup_logging
from shopcrm.services.sync_manager import build_sync_manager
from shopcrm.services.backup import BackupFormatError, import_bundle, read_import_file, write_export_file
from shopcrm.storage.local_provider import LocalStateStorage
from shopcrm.store.local_store import LocalStore


async def run_sync(command: str, strategy: str) -> int:
    store = LocalStore.load(LocalStateStorage())
    manager = build_sync_manager(store)
    try:
        connection = await manager.connect()
        if command == "status":
            status = manager.get_status()
            print(f"Configured: {status.is_configured}")
            print(f"State:      {status.state}")
            print(f"Connection: {connection.message}")
            return 0 if connection.success else 1
        if not connection.success:
            print(f"❌ {connection.message}")
            return 1

        if command == "push":
            result = await manager.push()
        else:
            result = await manager.pull(strategy)

        for name, count in sorted(result.counts.items()):
            print(f"  {name}: {count}")
        for name, error in sorted(result.errors.items()):
            print(f"  ⚠️  {name}: {error}")
        print(("✅ " if result.success else "❌ ") + result.message)
        return 0 if result.success else 1
    finally:
        await manager.cleanup()
        manager.gateways.backend.dispose()


def main():
    parser = argparse.ArgumentParser(description="Sync the local CRM state with the remote database")
    parser.add_argument("command", choices=["status", "push", "pull", "export", "import"])
    parser.add_argument("path", nargs="?", help="File for export/import")
    parser.add_argument("--strategy", choices=["merge", "replace"], default="merge", help="Pull strategy")
    args = parser.parse_args()

    setup_logging()

    if args.command in ("export", "import"):
        if not args.path:
            parser.error(f"{args.command} needs a file path")
        storage = LocalStateStorage()
        if args.command == "export":
            path = write_export_file(LocalStore.load(storage), args.path)
            print(f"✅ Exported to {path}")
            return 0
        try:
            counts = import_bundle(storage, read_import_file(args.path), settings.state_storage_key)
        except (BackupFormatError, OSError) as e:
            print(f"❌ {e}")
            return 1
        print(f"✅ Imported {counts}")
        return 0

    return asyncio.run(run_sync(args.command, args.strategy))


if __name__ == "__main__":
    sys.exit(main())
