"""Order sync engine — periodic pull of WooCommerce orders into the mirror.

One cycle: idle → fetching → normalizing → persisting → idle.

  - Window: modified_after the last successful cycle, else orders created in
    the last settings.sync_bootstrap_days days
  - Orders come oldest-modified first; a fetch cut short by
    settings.sync_max_pages moves the window only up to the last order it
    actually saw, so the next cycle picks up the rest
  - Fetch failure: cycle aborts, window unchanged, next cycle retries it
  - Auth failure: engine disabled until reset_auth() or restart
  - Per-order failures (persist or side effects) are logged and skipped
  - Side effects (customer import, journal regeneration) run in small
    batches with a pause, retried only on ConflictError
  - A cycle requested while one is running is dropped, not queued

Usage:
    engine = OrderSyncEngine(WooCommerceClient(), tax_cache)
    engine.on_sync_update(lambda orders, is_new: ...)
    await engine.start_sync(interval_minutes=2)
"""

import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from .config import settings
from .errors import AuthError, NetworkError
from .models import Order, SalesJournal, SyncLog, SyncState
from .scheduler import _utc, order_sync_job, schedule_order_sync, unschedule_order_sync
from .services import customer_service, order_service, sales_journal_service
from .utils import parse_upstream_datetime
from .utils.retry import RetryPolicy, acall_with_retry

log = logging.getLogger(__name__)

SOURCE = "woocommerce"

_SINGLE_ATTEMPT = RetryPolicy(attempts=1)


@dataclass
class SyncResult:
    success: bool = False
    fetched: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    side_effect_failures: int = 0
    journals_refreshed: int = 0
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def as_dict(self) -> dict:
        d = asdict(self)
        for key in ("started_at", "finished_at"):
            d[key] = d[key].isoformat() if d[key] else None
        return d


def _gmt(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


class OrderSyncEngine:
    def __init__(self, client, tax_cache, session_factory=None, account_id: str | None = None):
        self.client = client
        self.tax_cache = tax_cache
        self.account_id = account_id or settings.wc_account_id
        self._session_factory = session_factory
        self._permit = asyncio.Lock()
        self._listeners = []
        self.state = "idle"
        self.last_synced_at: datetime | None = None
        self.last_result: SyncResult | None = None
        self.last_error: str | None = None
        self.sync_disabled_reason: str | None = None
        self.interval_minutes: float | None = None

    def _session(self):
        if self._session_factory is not None:
            return self._session_factory()
        from .database import SessionLocal

        return SessionLocal()

    # ── Listeners ────────────────────────────────────────────────────

    def on_sync_update(self, callback):
        """Register callback(orders, is_new_orders); sync or async. Returns it."""
        self._listeners.append(callback)
        return callback

    def off_sync_update(self, callback) -> None:
        self._listeners = [cb for cb in self._listeners if cb is not callback]

    async def _notify(self, orders: list[Order], is_new_orders: bool) -> None:
        for callback in list(self._listeners):
            try:
                outcome = callback(orders, is_new_orders)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                log.exception(f"Sync listener {callback!r} failed")

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start_sync(self, interval_minutes: float | None = None) -> SyncResult | None:
        """Build the tax cache, run a first cycle now, then every interval."""
        interval = interval_minutes or settings.sync_interval_minutes
        await self.tax_cache.initialize(self.client)
        schedule_order_sync(self.perform_sync_once, interval)
        self.interval_minutes = interval
        return await self.perform_sync_once()

    def stop_sync(self) -> bool:
        """Stop future cycles. A cycle in flight finishes normally."""
        self.interval_minutes = None
        return unschedule_order_sync()

    def reset_auth(self) -> None:
        if self.sync_disabled_reason:
            log.info(f"Sync re-enabled (was: {self.sync_disabled_reason})")
        self.sync_disabled_reason = None

    @property
    def is_syncing(self) -> bool:
        return self._permit.locked()

    # ── Cycle ────────────────────────────────────────────────────────

    async def perform_sync_once(self) -> SyncResult | None:
        """Run one cycle. Returns None when another cycle already holds the permit."""
        if self.sync_disabled_reason:
            log.warning(f"Sync disabled: {self.sync_disabled_reason}")
            return SyncResult(success=False, error=self.sync_disabled_reason)
        if self._permit.locked():
            log.info("Sync cycle already in progress, request dropped")
            return None
        async with self._permit:
            return await self._run_cycle()

    async def _run_cycle(self) -> SyncResult:
        started = datetime.now(timezone.utc)
        result = SyncResult(started_at=started)
        db = self._session()
        try:
            self.state = "fetching"
            since = self._window_start(db)
            try:
                raw_orders, truncated = await self._fetch_all(since)
            except NetworkError as e:
                if isinstance(e, AuthError):
                    self.sync_disabled_reason = f"Authentication failed: {e.message}"
                    log.error(f"Sync disabled until credentials are fixed: {e.message}")
                else:
                    log.warning(f"Order fetch failed, window kept for next cycle: {e.message}")
                result.error = e.message
                return self._finish(db, result, "error")
            result.fetched = len(raw_orders)

            self.state = "normalizing"
            await self._fill_missing_tax_classes(raw_orders)
            normalized = []
            for raw in raw_orders:
                try:
                    normalized.append(order_service.normalize_order(raw, self.tax_cache, self.account_id))
                except ValueError as e:
                    result.failed += 1
                    log.warning(f"Skipping malformed order: {e}")

            self.state = "persisting"
            persisted, created = order_service.upsert_orders(db, normalized)
            result.failed += len(normalized) - len(persisted)
            result.created = created
            result.updated = len(persisted) - created
            await self._run_side_effects(db, persisted, result)

            cursor = self._partial_cursor(raw_orders, since) if truncated else started
            if cursor is not None:
                self._advance(db, cursor)
            result.success = True
            self._finish(db, result, "success")
            log.info(
                f"Sync cycle done: {result.fetched} fetched, {result.created} new, "
                f"{result.updated} updated, {result.failed} failed"
            )
            await self._notify(order_service.all_orders(db, self.account_id), created > 0)
            return result
        finally:
            self.state = "idle"
            db.close()

    async def _fetch_all(self, since: datetime | None) -> tuple[list[dict], bool]:
        """All orders in the window, oldest-modified first. True when the page limit cut it short."""
        params = {
            "per_page": settings.sync_page_size,
            "orderby": "modified",
            "order": "asc",
            "dates_are_gmt": True,
        }
        if since:
            params["modified_after"] = _gmt(since)
        else:
            params["after"] = _gmt(
                datetime.now(timezone.utc) - timedelta(days=settings.sync_bootstrap_days)
            )

        by_id: dict = {}
        for page in range(1, settings.sync_max_pages + 1):
            batch = await self.client.fetch_orders(page=page, **params)
            for raw in batch:
                by_id.setdefault(raw.get("id"), raw)
            if len(batch) < settings.sync_page_size:
                return list(by_id.values()), False
        log.warning(f"Stopped at page limit ({settings.sync_max_pages}); rest left for next cycle")
        return list(by_id.values()), True

    @staticmethod
    def _partial_cursor(raw_orders: list[dict], since: datetime | None) -> datetime | None:
        """Window start after a truncated fetch: just before the newest modification seen.

        Stepping back a second keeps orders that share the boundary second but
        sat on the next page; the step is skipped when it would not move the
        window forward. None keeps the window where it was.
        """
        seen = [
            _utc(parse_upstream_datetime(raw.get("date_modified_gmt") or raw.get("date_modified")))
            for raw in raw_orders
        ]
        seen = [dt for dt in seen if dt is not None]
        if not seen:
            return None
        newest = max(seen)
        cursor = newest - timedelta(seconds=1)
        if since is not None and cursor <= since:
            cursor = newest
        if since is not None and cursor <= since:
            return None
        return cursor

    async def _fill_missing_tax_classes(self, raw_orders: list[dict]) -> None:
        """Look up the product's tax class for line items that arrive without one."""
        for raw in raw_orders:
            for item in raw.get("line_items") or []:
                if "tax_class" in item or not item.get("product_id"):
                    continue
                tax_class = await self.client.fetch_product_tax_class(item["product_id"])
                if tax_class is not None:
                    item["tax_class"] = tax_class

    async def _run_side_effects(self, db, orders: list[Order], result: SyncResult) -> None:
        """Per-order chains run in the default executor, one at a time on db.

        The journal save retries inside the chain are switched off: the
        conflict backoff here is the only one, and it never blocks the loop.
        """
        policy = RetryPolicy(
            attempts=settings.sync_side_effect_attempts,
            base_delay=settings.sync_side_effect_base_delay,
            max_delay=settings.sync_side_effect_max_delay,
        )
        loop = asyncio.get_running_loop()
        size = max(1, settings.sync_batch_size)
        for start in range(0, len(orders), size):
            for order in orders[start:start + size]:
                try:
                    refreshed = await acall_with_retry(
                        lambda o=order: loop.run_in_executor(None, self._order_side_effects, db, o),
                        policy,
                        label=f"order {order.external_id} side effects",
                    )
                except Exception as e:
                    db.rollback()
                    result.side_effect_failures += 1
                    log.error(f"Side effects failed for order {order.external_id}: {e}")
                    continue
                result.journals_refreshed += refreshed
            if start + size < len(orders):
                await asyncio.sleep(settings.sync_batch_pause_seconds)

    def _order_side_effects(self, db, order: Order) -> int:
        customer_service.ensure_customer_from_order(db, order)
        journals = sales_journal_service.update_journals_for_order(
            db,
            order.external_id,
            self.tax_cache,
            order_date=order.date_created.date(),
            policy=_SINGLE_ATTEMPT,
        )
        return len(journals)

    # ── Sync state ───────────────────────────────────────────────────

    def _state_row(self, db) -> SyncState | None:
        return (
            db.query(SyncState)
            .filter(SyncState.source == SOURCE, SyncState.account_id == self.account_id)
            .first()
        )

    def _window_start(self, db) -> datetime | None:
        if self.last_synced_at is None:
            row = self._state_row(db)
            if row and row.last_synced_at:
                self.last_synced_at = _utc(row.last_synced_at)
        return self.last_synced_at

    def _advance(self, db, synced_at: datetime) -> None:
        self.last_synced_at = synced_at
        row = self._state_row(db)
        if row is None:
            row = SyncState(source=SOURCE, account_id=self.account_id)
            db.add(row)
        row.last_synced_at = synced_at
        db.commit()

    def _finish(self, db, result: SyncResult, status: str) -> SyncResult:
        result.finished_at = datetime.now(timezone.utc)
        self.last_result = result
        self.last_error = result.error
        duration = (result.finished_at - result.started_at).total_seconds()
        try:
            db.add(
                SyncLog(
                    source=SOURCE,
                    status=status,
                    started_at=result.started_at,
                    finished_at=result.finished_at,
                    duration_seconds=round(duration, 1),
                    row_counts={
                        "fetched": result.fetched,
                        "created": result.created,
                        "updated": result.updated,
                        "failed": result.failed,
                        "side_effect_failures": result.side_effect_failures,
                        "journals_refreshed": result.journals_refreshed,
                    },
                    errors=[result.error] if result.error else None,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            log.exception("Failed to write sync log")
        return result

    def reset_sync_state(self) -> None:
        """Forget the window; the next cycle bootstraps again."""
        self.last_synced_at = None
        self.last_error = None
        self.last_result = None
        db = self._session()
        try:
            db.query(SyncState).filter(
                SyncState.source == SOURCE, SyncState.account_id == self.account_id
            ).delete()
            db.commit()
        finally:
            db.close()
        log.info("Sync state reset")

    def get_sync_state(self) -> dict:
        job = order_sync_job()
        next_run = getattr(job, "next_run_time", None) if job else None
        return {
            "state": self.state,
            "is_syncing": self.is_syncing,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "last_error": self.last_error,
            "sync_disabled_reason": self.sync_disabled_reason,
            "scheduled": job is not None,
            "interval_minutes": self.interval_minutes,
            "next_run_at": next_run.isoformat() if next_run else None,
            "last_result": self.last_result.as_dict() if self.last_result else None,
        }

    def get_sync_stats(self) -> dict:
        db = self._session()
        try:
            return {
                "total_orders": db.query(Order).filter(Order.account_id == self.account_id).count(),
                "total_customers": customer_service.count_customers(db, self.account_id),
                "total_journals": db.query(SalesJournal).count(),
                "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            }
        finally:
            db.close()


_engine: OrderSyncEngine | None = None


def get_engine() -> OrderSyncEngine:
    """Process-wide engine on the configured store and the shared tax cache."""
    global _engine
    if _engine is None:
        from .connectors import WooCommerceClient
        from .services.tax_rates import tax_cache

        _engine = OrderSyncEngine(WooCommerceClient(), tax_cache)
    return _engine
