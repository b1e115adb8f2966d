#!/usr/bin/env python3
"""
Operator CLI for the voucher engine.

Usage:
    python scripts/voucher_cli.py generate-serial [--date 2025-03-01] [--count 5]
    python scripts/voucher_cli.py check-serial 250301123457
    python scripts/voucher_cli.py encode 250301123457 [--issued-at 2025-03-01T09:00:00+00:00]
    python scripts/voucher_cli.py verify '250301123457|20250301090000000000|ab12...'
    python scripts/voucher_cli.py init-db --url sqlite:///vouchers.db
    python scripts/voucher_cli.py --config site.yaml init-db

encode / verify read the signing secret through get_active_config(), i.e.
from the environment variable named in the configuration
(VOUCHER_SIGNING_SECRET by default).  The secret is never printed.
"""

import argparse
import sys
from datetime import date, datetime, timezone
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from voucher_config import get_active_config
from voucher_kernel.db.engine import create_tables, init_engine_from_url
from voucher_kernel.domain.codec import SerialTokenCodec
from voucher_kernel.domain.serial import (
    format_serial,
    generate_serial,
    parse_serial,
)
from voucher_kernel.exceptions import ConfigurationError, VoucherEngineError
from voucher_kernel.logging_config import configure_logging


def _codec(config_path: str | None) -> SerialTokenCodec:
    config = get_active_config(config_path)
    return SerialTokenCodec(config.codec.secret)


def cmd_generate_serial(args: argparse.Namespace) -> int:
    issue_date = date.fromisoformat(args.date) if args.date else date.today()
    for _ in range(args.count):
        serial = generate_serial(issue_date)
        print(f"{serial}  {format_serial(serial)}")
    return 0


def cmd_check_serial(args: argparse.Namespace) -> int:
    parts = parse_serial(args.serial.replace("-", ""))
    print(f"valid: issued {parts.issue_date.isoformat()}, check digit {parts.check_digit}")
    return 0


def cmd_encode(args: argparse.Namespace) -> int:
    issued_at = (
        datetime.fromisoformat(args.issued_at) if args.issued_at
        else datetime.now(timezone.utc)
    )
    print(_codec(args.config).encode_payload(args.serial, issued_at))
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    verified = _codec(args.config).decode_and_verify(args.payload)
    print(f"authentic: serial {format_serial(verified.serial_no)}, "
          f"issued {verified.issued_at.isoformat()}")
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    database = get_active_config(args.config, require_secret=False).database
    url = args.url or database.url
    if not url:
        raise ConfigurationError("database.url", "pass --url or set database.url in the config")
    engine = init_engine_from_url(url, echo=database.echo)
    create_tables(engine)
    print(f"Tables created on {engine.url.render_as_string(hide_password=True)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Voucher engine operator tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", default=None,
        help="Engine YAML config (default: packaged defaults)",
    )
    parser.add_argument(
        "--log-level", default="WARNING",
        help="Log level for structured JSON logs on stderr",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("generate-serial", help="Generate voucher serials")
    p.add_argument("--date", help="Issue date (YYYY-MM-DD), default today")
    p.add_argument("--count", type=int, default=1)
    p.set_defaults(func=cmd_generate_serial)

    p = sub.add_parser("check-serial", help="Validate a serial's date and check digit")
    p.add_argument("serial")
    p.set_defaults(func=cmd_check_serial)

    p = sub.add_parser("encode", help="Sign a QR payload for a serial")
    p.add_argument("serial")
    p.add_argument("--issued-at", help="ISO-8601 issuance instant, default now (UTC)")
    p.set_defaults(func=cmd_encode)

    p = sub.add_parser("verify", help="Verify a scanned payload")
    p.add_argument("payload")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("init-db", help="Create the voucher tables")
    p.add_argument("--url", help="SQLAlchemy database URL (default: database.url from --config)")
    p.set_defaults(func=cmd_init_db)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level.upper(), stream=sys.stderr)
    try:
        return args.func(args)
    except VoucherEngineError as exc:
        print(f"Error [{exc.code}]: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
