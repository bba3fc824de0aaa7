"""
Command line trigger for Balance Keeper

The ledger never schedules itself. A cron job or systemd timer calls this
script for the date-driven work:

  python -m app.main sweep-overdue --owner <uuid> [--as-of YYYY-MM-DD]
  python -m app.main generate-due --owner <uuid> [--as-of YYYY-MM-DD]
  python -m app.main balance --owner <uuid> [--account <uuid>]

Storage, time zone and logging come from LEDGER_* environment variables
(see balance_keeper.config).
"""

import argparse
import asyncio
import sys
from datetime import date
from uuid import UUID

from balance_keeper.config import get_settings, validate_all_settings
from balance_keeper.ledger import LedgerError
from balance_keeper.orchestrator import LedgerService, create_ledger_service
from balance_keeper.services.storage import StorageError


async def cmd_sweep_overdue(service: LedgerService, args) -> int:
    """Mark pending transactions dated before the as-of day as overdue."""
    updated = await service.sweep_overdue(args.owner, args.as_of)
    print(f"Marked {updated} transaction(s) overdue")
    return 0


async def cmd_generate_due(service: LedgerService, args) -> int:
    """Generate every occurrence that is due from the owner's templates."""
    generated = await service.generate_due(args.owner, args.as_of)

    print(f"Generated {len(generated)} transaction(s)")
    for transaction in generated:
        print(f"  {transaction.occurrence_date}  {transaction.title}  {transaction.amount}")
    return 0


async def cmd_balance(service: LedgerService, args) -> int:
    """Show one account's balance, or the total across active accounts."""
    if args.account:
        balance = await service.get_account_balance(args.owner, args.account)
        check = await service.verify_account_balance(args.owner, args.account)
        print(f"Balance: {balance}")
        if not check.is_consistent:
            print(f"WARNING: transactions add up to {check.expected_balance}")
            return 2
        return 0

    total = await service.get_total_balance(args.owner)
    print(f"Total balance: {total}")
    return 0


async def run(args) -> int:
    service = create_ledger_service()
    try:
        return await args.func(service, args)
    finally:
        await service.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Balance Keeper - scheduled ledger maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m app.main sweep-overdue --owner <uuid>
  python -m app.main generate-due --owner <uuid> --as-of 2024-03-01
  python -m app.main balance --owner <uuid> --account <uuid>
"""
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Sweep command
    sweep_parser = subparsers.add_parser("sweep-overdue", help="Mark past pending transactions overdue")
    sweep_parser.add_argument("--owner", type=UUID, required=True, help="Owner id")
    sweep_parser.add_argument("--as-of", type=date.fromisoformat, default=None,
                              help="Day to sweep against (default: today)")
    sweep_parser.set_defaults(func=cmd_sweep_overdue)

    # Generate command
    generate_parser = subparsers.add_parser("generate-due", help="Generate due recurring transactions")
    generate_parser.add_argument("--owner", type=UUID, required=True, help="Owner id")
    generate_parser.add_argument("--as-of", type=date.fromisoformat, default=None,
                                 help="Generate everything due on or before this day (default: today)")
    generate_parser.set_defaults(func=cmd_generate_due)

    # Balance command
    balance_parser = subparsers.add_parser("balance", help="Show account balances")
    balance_parser.add_argument("--owner", type=UUID, required=True, help="Owner id")
    balance_parser.add_argument("--account", type=UUID, default=None,
                                help="Account id (default: total of active accounts)")
    balance_parser.set_defaults(func=cmd_balance)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    checks = validate_all_settings()
    failed = [name for name, ok in checks.items() if ok is False]
    if failed:
        for name in failed:
            print(f"Invalid {name} settings: {checks[f'{name}_error']}", file=sys.stderr)
        return 1

    if get_settings().storage.backend == "memory":
        print("Warning: memory backend selected, nothing will be kept", file=sys.stderr)

    try:
        return asyncio.run(run(args))
    except (LedgerError, StorageError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
