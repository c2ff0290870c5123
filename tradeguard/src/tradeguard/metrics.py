"""
Prometheus metrics for the trading-integrity layer.

The metrics are module-level so every component increments the same
collectors.  The HTTP exposition endpoint is started by
``worker_main`` on ``PROMETHEUS_PORT``; importing this module does not
open any port.

Metrics
-------

* ``tradeguard_ledger_requests_total{operation,outcome}`` – ledger calls by
  final outcome (``ok``, ``empty``, ``failed``, ``auth_failed``).
* ``tradeguard_ledger_retries_total{operation}`` – retry attempts after a
  transient ledger failure.
* ``tradeguard_poll_cycles_total{outcome}`` – poll cycles (``completed``,
  ``failed``, ``skipped``).
* ``tradeguard_poll_last_duration_seconds`` – wall time of the last cycle.
* ``tradeguard_settlements_settled_total`` – settlements that reached SETTLED.
* ``tradeguard_on_settle_failures_total`` – failed on-settle callbacks.
* ``tradeguard_inventory_rejections_total`` – decrements refused for
  insufficient inventory.
* ``tradeguard_limit_rejections_total{side}`` – trading limit rejections.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

LEDGER_REQUESTS = Counter(
    "tradeguard_ledger_requests_total",
    "Ledger requests by operation and outcome",
    labelnames=["operation", "outcome"],
)
LEDGER_RETRIES = Counter(
    "tradeguard_ledger_retries_total",
    "Retries after transient ledger failures",
    labelnames=["operation"],
)
POLL_CYCLES = Counter(
    "tradeguard_poll_cycles_total",
    "Settlement poll cycles by outcome",
    labelnames=["outcome"],
)
POLL_DURATION = Gauge(
    "tradeguard_poll_last_duration_seconds",
    "Duration of the most recent settlement poll cycle",
)
SETTLEMENTS_SETTLED = Counter(
    "tradeguard_settlements_settled_total",
    "Settlements observed reaching the SETTLED state",
)
ON_SETTLE_FAILURES = Counter(
    "tradeguard_on_settle_failures_total",
    "Failed on-settle callbacks",
)
INVENTORY_REJECTIONS = Counter(
    "tradeguard_inventory_rejections_total",
    "Inventory decrements refused for insufficient quantity",
)
LIMIT_REJECTIONS = Counter(
    "tradeguard_limit_rejections_total",
    "Trading limit rejections",
    labelnames=["side"],
)
