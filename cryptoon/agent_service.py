"""
Auto-Purchase Agent - buys new premium chapters of favorited series.
=====================================================================

Every tick the agent:
1. Loads the readers who switched auto-purchase on
2. Walks their favorite series in the catalog
3. Picks premium chapters they do not own yet
4. Checks the agent balance and the reader's monthly limit
5. Sends USDC to the platform wallet and records the purchase

Only one tick runs at a time. A tick that fires while another is still
in flight is skipped, so two cycles never spend the same balance or the
same monthly budget concurrently.
"""

import asyncio
import logging
from dataclasses import dataclass

from .affordability import AffordabilityEvaluator
from .catalog import CatalogError

logger = logging.getLogger("AgentService")


@dataclass
class TickReport:
    skipped: bool = False
    reason: str | None = None
    users: int = 0
    attempted: int = 0
    purchased: int = 0
    failed: int = 0


def _error_message(e):
    return str(e) or e.__class__.__name__


class AgentService:

    def __init__(self, ledger, catalog, executor, receiver_wallet, interval_seconds=60, evaluator=None):
        self.ledger = ledger
        self.catalog = catalog
        self.executor = executor
        self.receiver_wallet = receiver_wallet
        self.interval_seconds = interval_seconds
        self.evaluator = evaluator or AffordabilityEvaluator(executor, ledger.agent)

        self._lock = asyncio.Lock()
        self._loop_task = None
        self._ticks = set()

    @property
    def is_running(self):
        return self._lock.locked()

    async def run_check(self, now=None):
        """One agent cycle. Never raises; failures end up in the log and the history."""
        if self._lock.locked():
            logger.info("🤖 Agent already running, skipping this cycle")
            return TickReport(skipped=True, reason="already running")

        async with self._lock:
            try:
                return await self._run_cycle(now)
            except Exception as e:
                logger.exception(f"❌ Agent error: {e}")
                return TickReport(skipped=True, reason=_error_message(e))

    async def _run_cycle(self, now):
        logger.info("🤖 Agent starting check cycle...")

        if not self.executor.is_configured():
            logger.info("❌ Agent wallet not configured, skipping agent cycle")
            return TickReport(skipped=True, reason="wallet not configured")

        enabled_users = self.ledger.agent.list_enabled_users()
        if not enabled_users:
            logger.info("ℹ️ No users have auto-purchase enabled")
            return TickReport()

        try:
            snapshot = self.catalog.load_catalog()
        except CatalogError as e:
            logger.error(f"❌ Catalog unavailable, aborting cycle: {e}")
            return TickReport(skipped=True, reason=_error_message(e))

        logger.info(f"👥 Checking {len(enabled_users)} user(s) with auto-purchase enabled")
        report = TickReport(users=len(enabled_users))

        for settings in enabled_users:
            try:
                await self._check_user(settings, snapshot, report, now)
            except Exception as e:
                logger.exception(f"❌ Agent check failed for {settings.address}: {e}")

        logger.info(
            f"🤖 Agent check cycle completed | "
            f"🛒 {report.attempted} attempted | ✅ {report.purchased} bought | ❌ {report.failed} failed"
        )
        return report

    async def _check_user(self, settings, snapshot, report, now):
        address = settings.address
        logger.info(f"📋 Checking user: {address}")

        favorites = self.ledger.favorites.list_favorites(address)
        if not favorites:
            logger.info(f"   ℹ️ No favorites for user {address}")
            return

        for favorite in favorites:
            series = self.catalog.find_series(favorite.series_id, snapshot)
            if series is None:
                logger.warning(f"   ⚠️ Series {favorite.series_id} not found in catalog")
                continue

            candidates = [
                chapter for chapter in series.premium_chapters()
                if not self.ledger.purchases.has_purchased(address, series.series_id, chapter.chapter_id)
            ]
            if not candidates:
                logger.info(f"   ✅ \"{series.title}\": all premium chapters already owned")
                continue

            logger.info(f"   💎 \"{series.title}\": {len(candidates)} unpurchased chapter(s)")
            for chapter in candidates:
                await self._purchase_chapter(settings, chapter, report, now)

    async def _purchase_chapter(self, settings, chapter, report, now):
        address = settings.address
        report.attempted += 1
        logger.info(f"      🛒 Chapter {chapter.chapter_id}: \"{chapter.title}\" ({chapter.price} USDC)")

        try:
            decision = await self.evaluator.evaluate(address, chapter.price, settings.monthly_limit, now=now)
            if not decision.approved:
                logger.info(f"      ❌ Cannot purchase: {decision.reason}")
                self._record_failure(settings, chapter, decision.reason, report, now)
                return

            tx_hash = await asyncio.to_thread(self.executor.transfer, self.receiver_wallet, chapter.price)
        except Exception as e:
            logger.info(f"      ❌ Purchase failed: {_error_message(e)}")
            self._record_failure(settings, chapter, _error_message(e), report, now)
            return

        # Funds have moved: from here on nothing may skip the history entry
        logger.info(f"      🔗 TX: {tx_hash}")
        report.purchased += 1
        try:
            self.ledger.purchases.record_purchase(
                address, chapter.series_id, chapter.chapter_id, tx_hash, chapter.price
            )
        except Exception as e:
            logger.exception(f"      ❌ Paid in {tx_hash} but the purchase was not recorded: {e}")
        try:
            self.ledger.agent.record_attempt(
                address, chapter.series_id, chapter.chapter_id, chapter.price,
                success=True, tx_hash=tx_hash, now=now,
            )
        except Exception as e:
            logger.exception(f"      ❌ Paid in {tx_hash} but the history entry was not written: {e}")

    def _record_failure(self, settings, chapter, reason, report, now):
        self.ledger.agent.record_attempt(
            settings.address, chapter.series_id, chapter.chapter_id, chapter.price,
            success=False, error=reason, now=now,
        )
        report.failed += 1

    # --- Scheduling ---

    def start(self):
        """Run a tick now, then one every interval_seconds, on the running event loop."""
        if self._loop_task is None or self._loop_task.done():
            logger.info(f"🤖 Auto-Purchase Agent started (every {self.interval_seconds}s)")
            self._loop_task = asyncio.create_task(self._schedule())
        return self._loop_task

    async def _schedule(self):
        while True:
            # Ticks are fired, not awaited: a slow cycle makes the next one skip
            tick = asyncio.create_task(self.run_check())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self.interval_seconds)

    async def stop(self):
        """Stop scheduling and let an in-flight cycle finish."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._ticks:
            await asyncio.gather(*self._ticks, return_exceptions=True)
        logger.info("🛑 Auto-Purchase Agent stopped")
