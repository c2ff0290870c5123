"""
Settlement ledger client with request signing, timeouts and retries.

This module defines an asynchronous client for the external trade ledger
(``POST /ledger/get``).  The ledger is the system of record for delivery
and settlement status, but it is not owned by this service and is
expected to be slow or unavailable from time to time.  The client
therefore:

* puts an explicit timeout on every request;
* retries connection failures, timeouts and HTTP 5xx responses with a
  linear backoff (``retry_delay * attempt``);
* never retries HTTP 4xx responses or malformed payloads;
* turns every failure into ``None`` / ``[]`` for its callers, except a
  rejected signature (401/403), which is raised as ``LedgerAuthError``
  so that a misconfigured key is not mistaken for "no data yet".
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import ClientResponse
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from ..errors import LedgerAuthError, LedgerHTTPError, LedgerUnavailable
from ..metrics import LEDGER_REQUESTS, LEDGER_RETRIES
from ..models import LedgerHealth, LedgerQuery, LedgerRecord
from .auth_providers import AuthProvider, UnsignedProvider

logger = logging.getLogger(__name__)

LEDGER_GET_PATH = "/ledger/get"
HEALTH_TIMEOUT_SECONDS = 5.0


def is_retryable(exc: BaseException) -> bool:
    """Return True for failures worth another attempt."""
    if isinstance(exc, LedgerUnavailable):
        return True
    if isinstance(exc, LedgerHTTPError):
        return exc.retryable
    return False


class LedgerClient:
    """Asynchronous client for the settlement ledger."""

    def __init__(
        self,
        base_url: str,
        *,
        auth_provider: Optional[AuthProvider] = None,
        timeout: float = 10.0,
        retry_count: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        """Construct the ledger client.

        Args:
            base_url: Ledger base URL, without the ``/ledger/get`` path.
            auth_provider: Builds request headers; unsigned when omitted.
            timeout: Per-request timeout in seconds.
            retry_count: Maximum attempts for a retryable failure.
            retry_delay: Base backoff in seconds; attempt ``n`` waits
                ``retry_delay * n`` before the next try.
        """
        self.base_url = base_url.rstrip("/")
        self.auth_provider = auth_provider or UnsignedProvider()
        self.timeout = timeout
        self.retry_count = max(1, retry_count)
        self.retry_delay = retry_delay

    async def _post(self, path: str, payload: Dict[str, Any], timeout: float) -> Any:
        url = f"{self.base_url}{path}"
        body = json.dumps(payload)
        headers = await self.auth_provider.get_headers(body)
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
                async with session.post(url, data=body, headers=headers) as resp:
                    await self._handle_response_errors(resp)
                    return await resp.json(content_type=None)
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as exc:
            raise LedgerUnavailable(f"{type(exc).__name__}: {exc}") from exc

    @staticmethod
    async def _handle_response_errors(resp: ClientResponse) -> None:
        if resp.status in (401, 403):
            raise LedgerAuthError(resp.status)
        if resp.status >= 400:
            # Avoid logging full response bodies; truncate to prevent leakage
            text = await resp.text()
            truncated = text[:200] if text else ""
            logger.error("Ledger API error %s: %s", resp.status, truncated)
            raise LedgerHTTPError(resp.status, truncated)

    async def _call(self, operation: str, payload: Dict[str, Any]) -> Any:
        def log_retry(state: RetryCallState) -> None:
            LEDGER_RETRIES.labels(operation=operation).inc()
            exc = state.outcome.exception() if state.outcome else None
            delay = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                "Ledger %s failed (%s); retry %d/%d in %.2fs",
                operation,
                exc,
                state.attempt_number,
                self.retry_count,
                delay,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_count),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._post(LEDGER_GET_PATH, payload, self.timeout)

    async def query_by_transaction(
        self, transaction_id: str, discom_id: str
    ) -> Optional[LedgerRecord]:
        """Return the ledger record for a transaction, or ``None``.

        ``None`` covers both "not on the ledger yet" and "ledger
        unreachable after all retries"; neither may change local state.
        """
        logger.debug("Querying ledger: txn=%s discom=%s", transaction_id, discom_id)
        payload = {
            "transactionId": transaction_id,
            "discomIdBuyer": discom_id,
            "limit": 1,
            "offset": 0,
        }
        try:
            data = await self._call("query_by_transaction", payload)
            records = self._parse_records(data)
        except LedgerAuthError:
            LEDGER_REQUESTS.labels(operation="query_by_transaction", outcome="auth_failed").inc()
            raise
        except Exception as exc:
            LEDGER_REQUESTS.labels(operation="query_by_transaction", outcome="failed").inc()
            logger.error("Ledger query failed for txn=%s: %s", transaction_id, exc)
            return None
        if not records:
            LEDGER_REQUESTS.labels(operation="query_by_transaction", outcome="empty").inc()
            logger.debug("No ledger records for txn=%s", transaction_id)
            return None
        LEDGER_REQUESTS.labels(operation="query_by_transaction", outcome="ok").inc()
        record = records[0]
        logger.debug(
            "Ledger record txn=%s buyer=%s seller=%s",
            transaction_id,
            record.status_buyer_discom,
            record.status_seller_discom,
        )
        return record

    async def query_many(self, query: Optional[LedgerQuery] = None) -> List[LedgerRecord]:
        """Return every record matching ``query`` (empty list on failure)."""
        query = query or LedgerQuery()
        try:
            data = await self._call("query_many", query.wire())
            records = self._parse_records(data)
        except LedgerAuthError:
            LEDGER_REQUESTS.labels(operation="query_many", outcome="auth_failed").inc()
            raise
        except Exception as exc:
            LEDGER_REQUESTS.labels(operation="query_many", outcome="failed").inc()
            logger.error("Ledger query failed: %s", exc)
            return []
        LEDGER_REQUESTS.labels(
            operation="query_many", outcome="ok" if records else "empty"
        ).inc()
        logger.debug("Ledger returned %d records", len(records))
        return records

    async def health(self) -> LedgerHealth:
        """Probe the ledger once with a short timeout."""
        start = time.monotonic()
        try:
            await self._post(LEDGER_GET_PATH, {"limit": 1, "offset": 0}, HEALTH_TIMEOUT_SECONDS)
        except Exception as exc:
            return LedgerHealth(
                ok=False, latency_ms=(time.monotonic() - start) * 1000.0, error=str(exc)
            )
        return LedgerHealth(ok=True, latency_ms=(time.monotonic() - start) * 1000.0)

    @staticmethod
    def _parse_records(data: Any) -> List[LedgerRecord]:
        if not isinstance(data, dict):
            return []
        return [LedgerRecord.model_validate(r) for r in data.get("records") or []]
