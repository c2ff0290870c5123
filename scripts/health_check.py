#!/usr/bin/env python
"""Simple configuration check.

Prints which settings the settlement worker reads are present in the
environment.  Secrets are reported as set/missing only, never printed.
Run it before starting the worker to catch a missing ledger URL or
signing key.
"""

from __future__ import annotations

import os


def main() -> None:
    keys = [
        "STATE_STORE_URI",
        "LEDGER_URL",
        "LEDGER_TIMEOUT_SECONDS",
        "LEDGER_RETRY_COUNT",
        "LEDGER_RETRY_DELAY_SECONDS",
        "DISCOM_ID",
        "ENABLE_SETTLEMENT_POLLING",
        "SETTLEMENT_POLL_INTERVAL_SECONDS",
        "ON_SETTLE_CALLBACK_URL",
        "BECKN_SUBSCRIBER_ID",
        "BECKN_SIGNING_KEY_ID",
        "BECKN_SIGNING_PRIVATE_KEY",
        "TRADING_UTC_OFFSET_MINUTES",
        "PROMETHEUS_PORT",
    ]
    print("Health Check:")
    for key in keys:
        val = os.environ.get(key) or os.environ.get(f"{key}_FILE")
        status = "set" if val else "missing"
        print(f"{key}: {status}")


if __name__ == "__main__":
    main()
