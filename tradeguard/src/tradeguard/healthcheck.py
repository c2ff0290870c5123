"""
Healthcheck module for the settlement worker container.

Verifies that the package and its dependencies import, and with
``--ledger`` also probes the settlement ledger once.  Exits non-zero on
failure so it can back a Docker ``HEALTHCHECK``.
"""

import argparse
import asyncio
import sys


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Settlement worker healthcheck")
    parser.add_argument("--ledger", action="store_true", help="also probe the settlement ledger")
    args = parser.parse_args(argv)
    try:
        from .clients.auth_providers import provider_from_secrets
        from .clients.ledger_client import LedgerClient
        from .config import Settings
    except Exception as exc:  # pragma: no cover - healthcheck only
        print(f"Import error: {exc}", file=sys.stderr)
        sys.exit(1)
    if args.ledger:
        settings = Settings.from_env()
        health = asyncio.run(LedgerClient(settings.ledger_url, auth_provider=provider_from_secrets()).health())
        if not health.ok:
            print(f"Ledger unreachable: {health.error}", file=sys.stderr)
            sys.exit(1)
        print(f"ledger ok ({health.latency_ms:.0f} ms)")
    print("ok")


if __name__ == "__main__":
    main()
