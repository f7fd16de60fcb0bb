"""
Claim Worker - recurring pass over every registered card.

Each pass claims the accrued balance of every card in registry order,
one card at a time with a fixed delay in between, and forwards the
configured tax share of every positive claim to the receiver card.
At most one pass runs at a time; triggers arriving meanwhile are dropped.
"""
import asyncio
import inspect
import json
import logging
import signal
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Callable, Optional
from card_claims.client import AMOUNT_PLACES
from card_claims.config import ClaimConfig
from card_claims.models import Card, ClaimEvent, ErrorKind, PassStats, WorkerStatus

log = logging.getLogger(__name__)


def compute_tax(amount: Decimal, tax_percent: Decimal) -> Decimal:
    """Tax share of a claim, rounded to the ledger's 8 places."""
    if tax_percent <= 0 or amount <= 0:
        return Decimal(0)
    return (amount * tax_percent).quantize(Decimal(1).scaleb(-AMOUNT_PLACES), rounding=ROUND_HALF_UP)


@dataclass
class WorkerState:
    """Single-flight guard and scheduling info, owned by one ClaimWorker."""
    running: bool = False
    next_run_at: float = 0.0
    last_pass: Optional[PassStats] = None


class ClaimWorker:
    """
    Claim worker.

    Features:
    - Single-flight: trigger()/run_pass() never start a second concurrent pass
    - Sequential pacing: queue_delay_s after every card
    - Per-card fault isolation; one failing card never aborts the pass
    - Pass-complete hooks (sync or async), failures ignored
    - Logs events to JSONL files
    """

    def __init__(
        self,
        config: ClaimConfig,
        registry,
        client,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable = asyncio.sleep,
    ):
        self.config = config
        self.registry = registry
        self.client = client
        self.interval_s = config.interval_s

        self._clock = clock
        self._sleep = sleep
        self._hooks: list[Callable] = []
        self._scheduler_task: Optional[asyncio.Task] = None
        self._pass_tasks: set[asyncio.Task] = set()

        self.state = WorkerState(next_run_at=clock() + self.interval_s)

        if self.config.log_dir:
            Path(self.config.log_dir).mkdir(parents=True, exist_ok=True)

    # === EXTERNAL INTERFACE ===

    def on_pass_complete(self, hook: Callable) -> Callable:
        """Register a hook called with the PassStats after every pass."""
        self._hooks.append(hook)
        return hook

    def status(self) -> WorkerStatus:
        return WorkerStatus(
            running=self.state.running,
            next_run_at=self.state.next_run_at,
            last_pass=self.state.last_pass,
        )

    def trigger(self) -> bool:
        """
        Start a pass in the background.

        Returns False (and does nothing) if a pass is already running.
        """
        loop = asyncio.get_running_loop()
        if self.state.running:
            log.info("Claim pass already running, trigger dropped")
            return False

        self.state.running = True
        task = loop.create_task(self._execute_pass())
        self._pass_tasks.add(task)
        task.add_done_callback(self._pass_tasks.discard)
        return True

    async def run_pass(self) -> Optional[PassStats]:
        """Run a pass now and wait for it; None if one was already running."""
        if self.state.running:
            log.info("Claim pass already running, request dropped")
            return None

        self.state.running = True
        task = asyncio.get_running_loop().create_task(self._execute_pass())
        self._pass_tasks.add(task)
        task.add_done_callback(self._pass_tasks.discard)
        return await task

    async def force_pass(self) -> Optional[PassStats]:
        """Out-of-band pass requested by an operator."""
        log.info("Forced claim pass requested")
        return await self.run_pass()

    def start_scheduler(self, interval: Optional[float] = None) -> asyncio.Task:
        """Begin recurring passes every `interval` seconds."""
        if self._scheduler_task and not self._scheduler_task.done():
            return self._scheduler_task

        if interval is not None:
            if interval <= 0:
                raise ValueError(f"interval must be positive, got {interval}")
            self.interval_s = interval

        self.state.next_run_at = self._clock() + self.interval_s
        self._scheduler_task = asyncio.get_running_loop().create_task(self._schedule_loop())
        log.info(f"Claim scheduler started (every {self.interval_s:.0f}s)")
        return self._scheduler_task

    async def stop(self):
        """Stop the scheduler and wait for an in-flight pass to finish."""
        if self._scheduler_task:
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass
            self._scheduler_task = None

        if self._pass_tasks:
            await asyncio.gather(*list(self._pass_tasks), return_exceptions=True)

    async def run_forever(self):
        """Run the scheduler until SIGINT/SIGTERM."""
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig, stop_event)

        self.start_scheduler()
        try:
            await stop_event.wait()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            await self.stop()
        log.info("Claim worker stopped")

    # === PASS ===

    async def _schedule_loop(self):
        if self.config.run_on_start:
            self.trigger()
        while True:
            await asyncio.sleep(self.interval_s)
            self.trigger()

    async def _execute_pass(self) -> PassStats:
        """One pass; the caller has already set the running guard."""
        stats = PassStats(started_at=self._clock())
        try:
            cards = self.registry.list_all()
            stats.total = len(cards)

            if not cards:
                log.info("No registered cards to process")
                return stats

            log.info(f"Processing {len(cards)} cards...")
            self._log_event(ClaimEvent(ts=int(stats.started_at), event="pass_start",
                                       stats={"total": len(cards)}))

            for card in cards:
                try:
                    await self._process_card(card, stats)
                except Exception as e:
                    log.warning(f"Unexpected error processing card {card.card_code}: {e}")
                    stats.failed += 1
                    self.registry.record_claim_failure(card.card_code)
                    self._log_event(ClaimEvent(ts=int(self._clock()), event="claim_failed",
                                               card_code=card.card_code, error=str(e)))

                await self._sleep(self.config.queue_delay_s)

            log.info(f"Pass finished: {stats.summary()}")

        except Exception as e:
            log.error(f"Claim worker fatal error: {e}")
            stats.fatal_error = str(e) or type(e).__name__

        finally:
            stats.finished_at = self._clock()
            self.state.next_run_at = stats.finished_at + self.interval_s
            self.state.last_pass = stats
            self.state.running = False
            self._log_event(ClaimEvent(ts=int(stats.finished_at), event="pass_end", stats={
                "total": stats.total,
                "claimed": stats.claimed,
                "zero": stats.zero,
                "cooldown": stats.cooldown,
                "removed": stats.removed,
                "failed": stats.failed,
                "tax_failed": stats.tax_failed,
                "total_claimed": str(stats.total_claimed),
                "total_tax": str(stats.total_tax),
                "fatal_error": stats.fatal_error,
            }))
            await self._notify(stats)

        return stats

    async def _process_card(self, card: Card, stats: PassStats):
        log.info(f"Claiming card {card.card_code} (owner {card.owner_id})")
        result = await self.client.claim(card.card_code)

        if result.success:
            amount = result.amount
            if amount is None or amount <= 0:
                log.info(f"Card {card.card_code} claimed zero, updating last claim")
                self.registry.record_claim_success(card.card_code, int(self._clock()))
                stats.zero += 1
                self._log_event(ClaimEvent(ts=int(self._clock()), event="claim_zero",
                                           card_code=card.card_code, owner_id=card.owner_id))
                return

            log.info(f"Card {card.card_code} claimed {amount}")
            stats.claimed += 1
            stats.total_claimed += amount
            await self._send_tax(card, amount, stats)

            self.registry.record_claim_success(card.card_code, int(self._clock()))
            self._log_event(ClaimEvent(ts=int(self._clock()), event="claim_success",
                                       card_code=card.card_code, owner_id=card.owner_id,
                                       amount=str(amount)))
            return

        kind = result.error_kind
        if kind == ErrorKind.COOLDOWN_ACTIVE:
            log.info(f"Card {card.card_code} is in cooldown, skipping")
            stats.cooldown += 1
            self._log_event(ClaimEvent(ts=int(self._clock()), event="claim_cooldown",
                                       card_code=card.card_code))

        elif kind == ErrorKind.NOT_FOUND:
            log.info(f"Card {card.card_code} not found on ledger, removing")
            self.registry.delete(card.card_code)
            stats.removed += 1
            self._log_event(ClaimEvent(ts=int(self._clock()), event="card_removed",
                                       card_code=card.card_code, owner_id=card.owner_id,
                                       error=result.detail))

        else:
            log.warning(f"Claim failed for {card.card_code}: {kind.value if kind else 'UNKNOWN'} {result.detail}")
            self.registry.record_claim_failure(card.card_code)
            stats.failed += 1
            self._log_event(ClaimEvent(ts=int(self._clock()), event="claim_failed",
                                       card_code=card.card_code,
                                       error_kind=kind.value if kind else None,
                                       error=result.detail))

    async def _send_tax(self, card: Card, amount: Decimal, stats: PassStats):
        """Forward the tax share; the outcome never changes the claim outcome."""
        tax = compute_tax(amount, self.config.tax_percent)
        if tax <= 0 or not self.config.tax_enabled:
            if tax > 0:
                log.warning("RECEIVER_CARD not set, skipping tax send")
            else:
                log.info("Tax is zero or TAX_PERCENT is 0, skipping tax send")
            stats.tax_skipped += 1
            return

        receiver = self.config.receiver_card
        log.info(f"Sending tax {tax} from {card.card_code} -> {receiver}")
        try:
            pay = await self.client.pay(card.card_code, receiver, tax)
        except Exception as e:
            log.warning(f"Tax payment FAILED for card {card.card_code}: {e}")
            stats.tax_failed += 1
            self._log_event(ClaimEvent(ts=int(self._clock()), event="tax_failed",
                                       card_code=card.card_code, tax=str(tax), error=str(e)))
            return

        if pay.success:
            log.info(f"Tax payment successful for card {card.card_code}")
            stats.tax_paid += 1
            stats.total_tax += pay.amount if pay.amount is not None else tax
            self._log_event(ClaimEvent(ts=int(self._clock()), event="tax_paid",
                                       card_code=card.card_code, tax=str(tax)))
        else:
            log.warning(f"Tax payment FAILED for card {card.card_code}: {pay.detail}")
            stats.tax_failed += 1
            self._log_event(ClaimEvent(ts=int(self._clock()), event="tax_failed",
                                       card_code=card.card_code, tax=str(tax),
                                       error_kind=pay.error_kind.value if pay.error_kind else None,
                                       error=pay.detail))

    async def _notify(self, stats: PassStats):
        for hook in list(self._hooks):
            try:
                result = hook(stats)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log.warning(f"Pass-complete hook failed: {e}")

    def _log_event(self, event: ClaimEvent):
        """Log event to JSONL file."""
        if not self.config.log_dir:
            return
        try:
            date = datetime.now().strftime("%Y-%m-%d")
            log_file = Path(self.config.log_dir) / f"claims_{date}.jsonl"

            with open(log_file, "a") as f:
                f.write(json.dumps(event.to_dict()) + "\n")
        except Exception as e:
            log.warning(f"Failed to log event: {e}")

    def _handle_signal(self, signum, stop_event: asyncio.Event):
        """Handle shutdown signals."""
        log.info(f"Received signal {signum}, shutting down...")
        stop_event.set()
