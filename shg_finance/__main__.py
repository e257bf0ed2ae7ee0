"""
Operator / cron entry point.

The engine never schedules itself; the host runs these commands:

    python -m shg_finance penalty-sweep --group GROUP_ID [--as-of 2024-05-01]
    python -m shg_finance savings-initiate --group GROUP_ID [--date 2024-05-01]
    python -m shg_finance balance --group GROUP_ID
"""

import argparse
import json
import sys
from datetime import date
from typing import List, Optional

from .config import get_config
from .errors import ShgError
from .logging_config import setup_logging
from .system import ShgSystem


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shg-finance",
        description="Scheduled and operator tasks for the SHG finance engine",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    sweep = commands.add_parser("penalty-sweep",
                                help="Apply late penalties to overdue installments and savings")
    sweep.add_argument("--group", required=True, help="SHG group id")
    sweep.add_argument("--as-of", type=_iso_date, default=None,
                       help="Business date to evaluate lateness against (default: today)")

    initiate = commands.add_parser("savings-initiate",
                                   help="Create savings records for the cycle containing a date")
    initiate.add_argument("--group", required=True, help="SHG group id")
    initiate.add_argument("--date", type=_iso_date, default=None,
                          help="Any date inside the cycle (default: today)")

    balance = commands.add_parser("balance", help="Print the group ledger position")
    balance.add_argument("--group", required=True, help="SHG group id")
    return parser


def run(args: argparse.Namespace, system: ShgSystem) -> dict:
    if args.command == "penalty-sweep":
        return {
            "installments_penalized": system.installments.apply_overdue_penalties(args.group, args.as_of),
            "savings_penalized": system.savings.apply_overdue_penalties(args.group, args.as_of),
        }
    if args.command == "savings-initiate":
        created = system.savings.initiate_cycle(args.group, args.date)
        return {"created": len(created)}
    system.directory.get_group(args.group)
    totals = system.ledger.get_totals(args.group)
    return {"total_in": totals.total_in, "total_out": totals.total_out, "balance": totals.balance}


def main(argv: Optional[List[str]] = None, system: Optional[ShgSystem] = None) -> int:
    args = build_parser().parse_args(argv)
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    system = system or ShgSystem(config=config)
    try:
        result = run(args, system)
    except ShgError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 1
    finally:
        system.close()

    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
