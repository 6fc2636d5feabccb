import argparse
import asyncio

from storefront.core.config import settings
from storefront.core.logging_config import configure_logging
from storefront.db.session import SessionLocal
from storefront.services import coupons as coupons_service
from storefront.services import side_effects


async def retry_side_effects(max_attempts: int | None = None) -> None:
    async with SessionLocal() as session:
        report = await side_effects.retry_pending_side_effects(session, max_attempts=max_attempts)
    print(
        f"attempted={report.attempted} resolved={report.resolved} "
        f"failed={report.failed} abandoned={report.abandoned}"
    )


async def warn_expiring_coupons(days: int) -> None:
    async with SessionLocal() as session:
        coupons = await coupons_service.warn_expiring_coupons(session, days=days)
    print(f"warned={len(coupons)}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Storefront maintenance tasks")
    subparsers = parser.add_subparsers(dest="command")

    retry = subparsers.add_parser("retry-side-effects", help="Replay queued inventory side effects")
    retry.add_argument("--max-attempts", type=int, default=None, help="Give up on entries after this many attempts")

    warn = subparsers.add_parser("warn-expiring-coupons", help="Notify about coupons close to expiry")
    warn.add_argument(
        "--days",
        type=int,
        default=settings.coupon_expiry_warning_days,
        help="Warn about coupons expiring within this many days",
    )
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "retry-side-effects":
        asyncio.run(retry_side_effects(args.max_attempts))
        return True

    if args.command == "warn-expiring-coupons":
        if args.days < 0:
            raise SystemExit("--days must not be negative")
        asyncio.run(warn_expiring_coupons(args.days))
        return True

    return False


def main():
    configure_logging(settings.log_json)
    parser = _build_parser()
    args = parser.parse_args()
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
