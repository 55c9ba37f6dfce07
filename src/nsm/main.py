from __future__ import annotations

import argparse
import logging
import sys
from datetime import date

from nsm.application.container import build_container
from nsm.config import get_app_paths, load_store_settings
from nsm.domain.errors import AppError
from nsm.logging_config import setup_logging

log = logging.getLogger("nsm.main")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nsm", description="Nail studio stock and cash ledger.")
    parser.add_argument("--db", help="SQLite database path (defaults to the app data directory).")
    sub = parser.add_subparsers(dest="command", required=True)

    summary = sub.add_parser("summary", help="Income, expense and profit for a month.")
    summary.add_argument("--year", type=int, default=date.today().year)
    summary.add_argument("--month", type=int, default=date.today().month)

    trend = sub.add_parser("trend", help="Monthly profit trend, oldest first.")
    trend.add_argument("--months", type=int, default=6)

    sub.add_parser("low-stock", help="Products at or below their minimum quantity.")

    export = sub.add_parser("export", help="Write the financial report workbook.")
    export.add_argument("path")
    export.add_argument("--start")
    export.add_argument("--end")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)

    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    try:
        settings = load_store_settings()
        c = build_container(db_path=args.db or paths.db_path, settings=settings)

        if args.command == "summary":
            m = c.financial.monthly_summary(args.year, args.month)
            print(f"{m.year:04d}-{m.month:02d}  income={m.total_income:.2f}  expense={m.total_expense:.2f}  profit={m.profit:.2f}")
        elif args.command == "trend":
            for m in c.financial.monthly_trend(args.months):
                print(f"{m.year:04d}-{m.month:02d}  {m.profit:>12.2f}")
        elif args.command == "low-stock":
            for p in c.catalog.low_stock_products():
                print(f"{p.code or '-':<8} {p.name:<32} {p.current_quantity:>10g} / {p.min_quantity:g} {p.unit}")
        elif args.command == "export":
            c.reporting.export_financial_report_excel(args.path, args.start, args.end)
            print(f"Report written to {args.path}")
    except (AppError, ValueError) as e:
        log.error("command_failed command=%s error=%s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
