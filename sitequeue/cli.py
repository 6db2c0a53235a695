#!/usr/bin/env python3
"""
Site queue operator command line.

Usage:
    sitequeue init-db [--db <file>]
    sitequeue seed-site [--name N --lat X --lon Y --radius M]
    sitequeue set-radius --site <id> --radius <meters>
    sitequeue sites
    sitequeue stats [--day YYYY-MM-DD]
    sitequeue verify --ref <reference> [--mark-used]
    sitequeue serve [--host H --port P]
"""

import argparse
import json
import sys
from datetime import date

from . import config


def _ledger(args):
    from .db import SqliteLedger
    ledger = SqliteLedger(args.db) if args.db else SqliteLedger()
    ledger.init_db()
    return ledger


def cmd_init_db(args):
    """Create tables, indexes and triggers."""
    ledger = _ledger(args)
    print(f"Schema ready at {ledger.db_path}")
    for name, ok in config.validate_config().items():
        if not ok:
            print(f"✗ config check failed: {name}", file=sys.stderr)
    return 0


def cmd_seed_site(args):
    """Register the default site (idempotent by name)."""
    ledger = _ledger(args)
    try:
        site = ledger.create_site(args.name, args.lat, args.lon, args.radius)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    print(f"✓ Site {site.name} ({site.id})")
    print(f"  Center: {site.latitude}, {site.longitude}")
    print(f"  Radius: {site.radius_m} meters")
    if (site.latitude, site.longitude) != (args.lat, args.lon):
        print("  Existing site kept; only the radius can be changed (set-radius)", file=sys.stderr)
    return 0


def cmd_set_radius(args):
    """Change a site's admission radius."""
    ledger = _ledger(args)
    try:
        site = ledger.update_site_radius(args.site, args.radius)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    if site is None:
        print(f"✗ Unknown site: {args.site}", file=sys.stderr)
        return 1
    print(f"✓ {site.name} radius is now {site.radius_m} meters")
    return 0


def cmd_sites(args):
    ledger = _ledger(args)
    for site in ledger.list_sites():
        print(f"{site.id}  {site.name}  {site.latitude},{site.longitude}  r={site.radius_m}m")
    return 0


def cmd_stats(args):
    """Print per-site counts for a day."""
    from .clock import Clock
    from .verification import VerificationService

    ledger = _ledger(args)
    service = VerificationService(ledger, Clock.for_zone(config.TIMEZONE))
    day = date.fromisoformat(args.day) if args.day else service.clock.today()
    print(json.dumps({
        "day": day.isoformat(),
        "sites": [s.to_dict() for s in service.stats(day)],
    }, indent=2))
    return 0


def cmd_verify(args):
    """Verify a ticket reference, optionally marking it used."""
    from .clock import Clock
    from .verification import VerificationService

    ledger = _ledger(args)
    service = VerificationService(ledger, Clock.for_zone(config.TIMEZONE))
    outcome = service.verify(args.ref, mark_used=args.mark_used)
    print(json.dumps(outcome.to_dict(), indent=2))
    return 0 if outcome.valid else 1


def cmd_serve(args):
    """Run the HTTP service."""
    import uvicorn
    uvicorn.run("sitequeue.main:app", host=args.host, port=args.port)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="sitequeue",
        description="Day-scoped admission tickets for a managed site",
    )
    parser.add_argument("--db", help="SQLite database path (default: SITEQUEUE_DB_PATH)")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("init-db", help="Create the schema")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("seed-site", help="Register a site")
    p.add_argument("--name", default=config.DEFAULT_SITE_NAME)
    p.add_argument("--lat", type=float, default=config.DEFAULT_SITE_LAT)
    p.add_argument("--lon", type=float, default=config.DEFAULT_SITE_LON)
    p.add_argument("--radius", type=float, default=config.DEFAULT_SITE_RADIUS)
    p.set_defaults(func=cmd_seed_site)

    p = sub.add_parser("set-radius", help="Change a site's admission radius")
    p.add_argument("--site", required=True)
    p.add_argument("--radius", type=float, required=True)
    p.set_defaults(func=cmd_set_radius)

    p = sub.add_parser("sites", help="List sites")
    p.set_defaults(func=cmd_sites)

    p = sub.add_parser("stats", help="Ticket counts for a day")
    p.add_argument("--day", help="YYYY-MM-DD (default: today, site-local)")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("verify", help="Verify a ticket reference")
    p.add_argument("--ref", required=True)
    p.add_argument("--mark-used", action="store_true")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
