# Check Supabase reachability the way the sync layer sees it
from __future__ import annotations
import sys
import io
import asyncio
import argparse
from pathlib import Path

sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import logging

from sync_core.config import load_config
from sync_core.data import SupabaseGateway
from sync_core.errors import SyncError
from sync_core.logging import setup_logging
from sync_core.sync import ConnectionMonitor


async def check(secrets_path: Path, refresh: bool) -> bool:
    config, settings = load_config(secrets_path)
    gateway = SupabaseGateway.from_settings(settings, probe_table=config.probe_table)
    monitor = ConnectionMonitor(gateway.probe, config, refresh_session=gateway.refresh_session)

    try:
        if refresh:
            await monitor.attempt_reconnect()
        else:
            await monitor.probe()

        print(f"\n{'='*60}")
        print(f"Supabase: {settings.url}")
        print(f"Probe table: {config.probe_table}")
        print(f"{'='*60}")
        for key, value in monitor.get_status_display().items():
            print(f"  - {key}: {value}")
        return monitor.is_reachable
    finally:
        await monitor.dispose()


def main():
    parser = argparse.ArgumentParser(description="Probe the Supabase backend once")
    parser.add_argument("--secrets", type=Path, default=project_root / ".streamlit" / "secrets.toml")
    parser.add_argument("--refresh-session", action="store_true", help="Refresh the auth session before probing")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        reachable = asyncio.run(check(args.secrets, args.refresh_session))
    except SyncError as e:
        print(f"  Error: [{e.code}] {e.message}")
        sys.exit(2)

    print("\nConnected" if reachable else "\nUnreachable")
    sys.exit(0 if reachable else 1)

if __name__ == "__main__":
    main()
