from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from .config import AppConfig, load_config
from .gate import ContinuationGate
from .logging_config import configure_logging
from .models import OperationRecord
from .notify import TelegramNotifier
from .portal.collector import DEFAULT_MAX_PAGES, HistoryCollector
from .portal.otp import HttpCodeSource
from .portal.page import HistoryPage
from .portal.session import reset_profile
from .query import OperationsQuery, SummaryQuery, get_operations, get_summary
from .store import DEFAULT_BANK, OperationStore
from .util.debug_bundle import create_debug_bundle


logger = logging.getLogger("vtb_history_sync")

DEBUG_DIR = "data/debug"


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="vtb-history-sync")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    collect = sub.add_parser("collect", help="Log in to VTB Online and store operations newer than the last run")
    collect.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    collect.add_argument("--headful", action="store_true", help="Run browser headful (debug)")
    collect.add_argument(
        "--max-pages",
        type=int,
        default=DEFAULT_MAX_PAGES,
        help=f"Max times to scroll/load more rows (default: {DEFAULT_MAX_PAGES})",
    )
    collect.add_argument("--dry-run", action="store_true", help="Do not write operations to the store; log them instead")
    collect.add_argument(
        "--fresh-profile",
        action="store_true",
        help="Delete the persistent browser profile first (forces a full phone + SMS + PIN login).",
    )
    collect.add_argument("--step-debug", action="store_true", help="Save step-by-step screenshots under data/debug/.")
    collect.add_argument("--log-steps", action="store_true", help="Log each browser step without screenshots.")
    collect.add_argument(
        "--step-delay-ms",
        type=int,
        default=0,
        help="Extra delay (ms) after each captured step screenshot (so you can watch the browser).",
    )
    collect.add_argument("--out", default="", help="Also write the collected operations to this JSON file.")

    ops = sub.add_parser("operations", help="Print stored operations as JSON (newest first)")
    ops.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    ops.add_argument("--from", dest="date_from", default="", help="Only operations on/after this date (YYYY-MM-DD)")
    ops.add_argument("--to", dest="date_to", default="", help="Only operations on/before this date (YYYY-MM-DD)")
    ops.add_argument("--min", dest="amount_min", default=None, help="Minimum signed amount, e.g. -5000")
    ops.add_argument("--max", dest="amount_max", default=None, help="Maximum signed amount, e.g. 0")
    ops.add_argument("--text", default="", help="Case-insensitive substring of the description")
    ops.add_argument("--category", default="", help="Case-insensitive substring of the bank category")
    ops.add_argument("--bank", default="", help="Bank code (default: all)")
    ops.add_argument("--limit", type=int, default=50, help="1..500 (default: 50)")
    ops.add_argument("--offset", type=int, default=0)

    summary = sub.add_parser("summary", help="Print per-period income/expense totals as JSON")
    summary.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    summary.add_argument("--granularity", choices=["day", "week", "month", "year"], default="day")
    summary.add_argument("--from", dest="date_from", default="", help="Only periods starting on/after this date")
    summary.add_argument("--to", dest="date_to", default="", help="Only periods starting on/before this date")
    summary.add_argument("--bank", default="", help="Bank code (default: all)")
    summary.add_argument("--limit", type=int, default=200, help="1..1000 (default: 200)")
    summary.add_argument("--offset", type=int, default=0)

    preflight = sub.add_parser(
        "preflight",
        help="Validate configuration, the operations DB and the SMS code endpoint. Does not run Playwright.",
    )
    preflight.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    preflight.add_argument("--skip-otp", action="store_true", help="Skip the SMS code endpoint check")

    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    cfg = load_config(args.config)
    configure_logging(
        level=cfg.logging.level,
        file_path=cfg.logging.file_path,
        secrets=(cfg.bank.pin, cfg.bank.phone, cfg.telegram.bot_token),
    )

    if args.cmd == "preflight":
        logger.info("Starting preflight checks")
        _preflight(cfg, skip_otp=args.skip_otp)
        logger.info("Preflight OK")
        return 0

    if args.cmd == "collect":
        logger.info("Starting collect (dry_run=%s, max_pages=%d)", args.dry_run, args.max_pages)
        notifier = TelegramNotifier.from_config(cfg.telegram)
        try:
            return asyncio.run(_collect(cfg, args, notifier))
        except Exception as e:
            # Auto-bundle debug artifacts + log for easy sharing.
            try:
                bundle = create_debug_bundle(
                    debug_dir=DEBUG_DIR,
                    log_file=cfg.logging.file_path or "data/sync.log",
                    out_dir="data",
                    label="vtb",
                )
                logger.error("Wrote debug bundle: %s", bundle)
                asyncio.run(notifier.send_document(bundle, caption=f"VTB collect failed: {e}"))
            except OSError:
                logger.debug("Failed to create debug bundle.", exc_info=True)
            raise

    if args.cmd == "operations":
        try:
            query = OperationsQuery(
                limit=args.limit,
                offset=args.offset,
                date_from=args.date_from or None,
                date_to=args.date_to or None,
                amount_min=args.amount_min,
                amount_max=args.amount_max,
                text_ilike=args.text,
                category_ilike=args.category,
                bank=args.bank,
            )
        except ValidationError as e:
            raise SystemExit(f"Invalid filters: {e}")
        store = OperationStore(cfg.store.db_path)
        try:
            rows = [r.model_dump(mode="json") for r in get_operations(store, query)]
        finally:
            store.close()
        _print_json({"rows": rows, "count": len(rows)})
        return 0

    if args.cmd == "summary":
        try:
            query = SummaryQuery(
                granularity=args.granularity,
                limit=args.limit,
                offset=args.offset,
                date_from=args.date_from or None,
                date_to=args.date_to or None,
                bank=args.bank,
            )
        except ValidationError as e:
            raise SystemExit(f"Invalid filters: {e}")
        store = OperationStore(cfg.store.db_path)
        try:
            rows = [r.model_dump(mode="json") for r in get_summary(store, query)]
        finally:
            store.close()
        _print_json({"rows": rows, "count": len(rows)})
        return 0

    raise AssertionError("Unhandled command")


def _print_json(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _preflight(cfg: AppConfig, *, skip_otp: bool) -> None:
    """
    Validate config and external dependencies without touching the bank portal.
    """
    bank = cfg.bank
    missing = [name for name, value in (("VTB_PHONE", bank.phone), ("VTB_PIN", bank.pin)) if not value]
    if missing:
        logger.warning("Not configured: %s (needed whenever the portal asks for them).", ", ".join(missing))
    if not cfg.telegram.enabled:
        logger.info("Telegram notifications disabled (TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID not set).")

    store = OperationStore(cfg.store.db_path)
    try:
        logger.info("Operations DB OK: %s (%d stored)", cfg.store.db_path, store.count_operations())
        known = store.known_identity(bank=DEFAULT_BANK)
        if known.latest is not None:
            logger.info("Next run stops at: %s %s %s", known.latest.raw_date, known.latest.text, known.latest.amount)
    finally:
        store.close()

    if skip_otp:
        return
    if not bank.get_code_url:
        raise SystemExit("Missing VTB_GET_CODE_URL (SMS code endpoint).")
    status = asyncio.run(HttpCodeSource(get_url=bank.get_code_url, code_regex=bank.code_regex).probe())
    if status >= 500:
        raise SystemExit(f"SMS code endpoint returned HTTP {status}")
    logger.info("SMS code endpoint reachable (HTTP %s)", status)


async def _collect(cfg: AppConfig, args: argparse.Namespace, notifier: TelegramNotifier) -> int:
    if args.fresh_profile:
        reset_profile(cfg.browser.user_data_dir)

    store = OperationStore(cfg.store.db_path)
    run_id = store.record_run_start()
    inserted = 0
    try:
        known = store.known_identity(bank=DEFAULT_BANK)
        if known.empty:
            logger.info("No stored operations yet; collecting the full history.")

        async def write(batch: list[OperationRecord]) -> int:
            nonlocal inserted
            if args.dry_run:
                for r in batch:
                    logger.info("[dry-run] would store %s | %s | %s | %s", r.raw_date, r.text, r.amount, r.category)
                return 0
            n = store.insert_operations(batch, bank=DEFAULT_BANK)
            inserted += n
            return n

        gate = ContinuationGate(known, writer=write)
        collector = HistoryCollector(
            cfg,
            headless=False if args.headful else None,
            debug_dir=DEBUG_DIR,
            step_log=args.log_steps,
            step_screenshots=args.step_debug,
            step_delay_ms=args.step_delay_ms,
        )
        await notifier.send_text("VTB: collecting history…")
        try:
            await collector.init()
            await collector.login_and_prepare()
            records = await collector.collect_operations(max_pages=args.max_pages, on_snapshot=gate)
        except Exception:
            if isinstance(collector.page, HistoryPage):
                await collector.page.save_debug("collect_error")
            raise
        finally:
            await collector.shutdown()

        if args.out:
            _write_records(args.out, records)

        reason = gate.stopped.reason if gate.stopped else "end of list"
        message = f"{len(records)} collected, {inserted} new ({reason})"
        if args.dry_run:
            message = "dry-run: " + message
        store.record_run_finish(run_id, ok=True, message=message, inserted=inserted)
        logger.info("Collect finished: %s", message)
        await notifier.send_text(f"VTB: {message}")
        return 0
    except Exception as e:
        store.record_run_finish(run_id, ok=False, message=str(e), inserted=inserted)
        await notifier.send_text(f"VTB collect failed: {type(e).__name__}: {e}")
        raise
    finally:
        store.close()


def _write_records(path: str, records: list[OperationRecord]) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    payload = [r.model_dump(mode="json") for r in records]
    out.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info("Wrote %d operation(s) to %s", len(records), out)


if __name__ == "__main__":
    raise SystemExit(main())
