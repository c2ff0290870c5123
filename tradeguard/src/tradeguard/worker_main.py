"""
Entry point for the settlement worker.

This module wires the settlement store, ledger client, on-settle notifier
and settlement poller together, exposes Prometheus metrics, and keeps the
poller running for the lifetime of the container.  The limit validator
and inventory ledger are not started here; the order flow uses them
directly.

Run with ``python -m tradeguard.worker_main``.
"""

import asyncio
import logging

from prometheus_client import start_http_server

from .clients.auth_providers import provider_from_secrets
from .clients.ledger_client import LedgerClient
from .config import Settings
from .services.db import create_engine_from_uri, init_db
from .services.notifier import OnSettleNotifier
from .services.party_store import PartyStore
from .services.settlement_poller import SettlementPoller
from .services.settlement_store import SettlementStore


async def main() -> None:
    """Start the poller and block until cancelled."""
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    logger = logging.getLogger(__name__)

    try:
        start_http_server(settings.prometheus_port)
    except OSError as exc:
        logger.warning(
            "Failed to start Prometheus server on port %d: %s", settings.prometheus_port, exc
        )

    engine = create_engine_from_uri(settings.state_store_uri)
    await init_db(engine)

    ledger = LedgerClient(
        settings.ledger_url,
        auth_provider=provider_from_secrets(),
        timeout=settings.ledger_timeout,
        retry_count=settings.ledger_retry_count,
        retry_delay=settings.ledger_retry_delay,
    )
    health = await ledger.health()
    logger.info("Ledger %s reachable=%s (%.0f ms)", settings.ledger_url, health.ok, health.latency_ms)

    parties = PartyStore(engine)
    poller = SettlementPoller(
        SettlementStore(engine),
        ledger,
        OnSettleNotifier(
            settings.on_settle_callback_url,
            domain=settings.beckn_domain,
            timeout=settings.on_settle_timeout,
        ),
        discom_id=settings.discom_id,
        interval=settings.poll_interval,
        initial_delay=settings.poll_initial_delay,
        enabled=settings.polling_enabled,
        on_buyer_delivered=parties.mark_buyer_order_delivered,
    )
    poller.start()
    logger.info("Settlement worker started")
    try:
        await asyncio.Event().wait()
    finally:
        poller.stop()
        await engine.dispose()
        logger.info("Settlement worker exiting")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
