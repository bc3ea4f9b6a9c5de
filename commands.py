"""
Maintenance commands for the tracker database.

Usage:
    python commands.py clear-data [--confirm]
    python commands.py list-customers
"""
import sys
import json
import logging
import argparse

from pymongo.errors import PyMongoError

import database

logger = logging.getLogger(__name__)


def clear_data(confirm: bool = False, out=sys.stdout) -> int:
    if not confirm:
        out.write("WARNING: This will delete ALL customers, products, materials, orders and projects.\n")
        if input('Type "YES" to confirm: ') != "YES":
            out.write("Operation cancelled.\n")
            return 1

    for name in database.COLLECTIONS:
        res = database.db[name].delete_many({})
        out.write(f"Cleared {name}: {res.deleted_count} documents deleted\n")
    out.write("All data cleared successfully\n")
    return 0


def list_customers(out=sys.stdout) -> int:
    customers = [database.to_str_id(d) for d in database.get_documents("customer", sort=[("name", 1)])]
    out.write("Customers in database:\n")
    out.write(json.dumps(customers, indent=2) + "\n")
    out.write(f"Total customers: {len(customers)}\n")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Leatherworking tracker maintenance")
    sub = parser.add_subparsers(dest="command", required=True)
    clear = sub.add_parser("clear-data", help="Delete every document in every collection")
    clear.add_argument("--confirm", action="store_true", help="Skip confirmation prompt")
    sub.add_parser("list-customers", help="Print all customers as JSON")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    try:
        if args.command == "clear-data":
            return clear_data(confirm=args.confirm)
        return list_customers()
    except PyMongoError:
        logger.exception("Database command failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
