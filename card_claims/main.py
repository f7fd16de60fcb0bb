#!/usr/bin/env python3
"""
Card auto-claim — links cards to owners and claims them on a schedule.

USAGE:
    python -m card_claims.main run                      # Scheduler (Ctrl+C to stop)
    python -m card_claims.main once                     # Force a single pass
    python -m card_claims.main link CARD --user ID
    python -m card_claims.main unlink CARD --user ID
    python -m card_claims.main cards --user ID          # or --all

Settings come from .env (API_BASE, DB_PATH, CLAIM_INTERVAL_MS,
CLAIM_QUEUE_DELAY_MS, TAX_PERCENT, RECEIVER_CARD, ...).
"""
import argparse
import asyncio
import logging
import sys
import time
from typing import Optional

from .client import LedgerClient
from .config import ClaimConfig
from .models import PassStats, RemoveOutcome
from .registry import CardRegistry
from .worker import ClaimWorker

log = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-5s %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def format_duration(seconds: float) -> str:
    """10.5 -> '0m 10s'."""
    if not seconds or seconds <= 0:
        return "0m 0s"
    s = int(seconds)
    return f"{s // 60}m {s % 60}s"


def format_last_claim_ago(last_claim_ts: int, now: Optional[float] = None) -> str:
    if not last_claim_ts or last_claim_ts <= 0:
        return "never"
    now = time.time() if now is None else now
    diff = max(0, int(now) - int(last_claim_ts))
    h, rem = divmod(diff, 3600)
    m, s = divmod(rem, 60)
    return f"{h}h {m}m {s}s ago"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Card auto-claim worker")
    parser.add_argument("--debug", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run the claim scheduler until interrupted")
    sub.add_parser("once", help="Force a single claim pass now")

    p = sub.add_parser("link", help="Link a card to a user")
    p.add_argument("card")
    p.add_argument("--user", required=True)

    p = sub.add_parser("unlink", help="Unlink a card you own")
    p.add_argument("card")
    p.add_argument("--user", required=True)

    p = sub.add_parser("cards", help="List linked cards")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--user")
    group.add_argument("--all", action="store_true")

    return parser


def print_cards(cards, now: Optional[float] = None):
    if not cards:
        print("No linked cards.")
        return
    for c in cards:
        print(f"{c.card_code}  owner={c.owner_id}  last claim: {format_last_claim_ago(c.last_claim_ts, now)}"
              f"  retries: {c.claim_retry}")


async def run_worker(config: ClaimConfig, registry: CardRegistry, *, once: bool) -> Optional[PassStats]:
    async with LedgerClient(config) as client:
        worker = ClaimWorker(config, registry, client)

        @worker.on_pass_complete
        def refresh_panel(stats: PassStats):
            # Stand-in for the panel refresh: registered-card count after every pass
            log.info(f"Registered cards: {registry.count()} | next pass in "
                     f"{format_duration(worker.status().seconds_until_next_run(time.time()))}")

        if once:
            return await worker.force_pass()

        await worker.run_forever()
        return None


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.debug else logging.INFO)

    config = ClaimConfig()
    errors = config.validate()
    if errors:
        log.error("Configuration errors:")
        for e in errors:
            log.error(f"  - {e}")
        return 1

    registry = CardRegistry(config.db_path)
    try:
        if args.command == "link":
            outcome = registry.upsert(args.card.strip(), args.user)
            print(f"Card {args.card.strip()} linked to {args.user} ({outcome.value})")
            return 0

        if args.command == "unlink":
            outcome = registry.remove(args.card.strip(), args.user)
            if outcome == RemoveOutcome.OK:
                print(f"Card {args.card.strip()} unlinked.")
                return 0
            print(f"Cannot unlink card: {outcome.value}")
            return 1

        if args.command == "cards":
            print_cards(registry.list_all() if args.all else registry.list_by_owner(args.user))
            return 0

        for w in config.warnings():
            log.warning(w)
        log.info("=" * 60)
        log.info(f"  Ledger API: {config.api_base}")
        log.info(f"  Interval: {format_duration(config.interval_s)} | queue delay {config.queue_delay_s}s")
        log.info(f"  Tax: {config.tax_percent} -> {config.receiver_card or '(disabled)'}")
        log.info("=" * 60)

        stats = asyncio.run(run_worker(config, registry, once=(args.command == "once")))
        if stats is not None:
            print(stats.summary())
            return 1 if stats.fatal_error else 0
        return 0
    except ValueError as e:
        log.error(str(e))
        return 1
    except KeyboardInterrupt:
        log.info("Interrupted by user")
        return 0
    finally:
        registry.close()


if __name__ == "__main__":
    sys.exit(main())
