"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any

from ..config import Config, create_default_config, load_config
from ..matching import DocumentMatcher
from ..recurring import RecurringDetector
from ..schemas.context import OrgContext
from ..schemas.document import Document, DocumentType
from ..schemas.subscription import SubscriptionRule
from ..schemas.transaction import Direction, TransactionFilter
from ..services import StatementImporter
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _date_arg(value: str) -> str:
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value!r}")


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bank-ledger",
        description="Import bank statements into a deduplicated ledger and link documents",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-config", help="Write a default config file")

    # import command
    import_parser = subparsers.add_parser("import", help="Import a bank statement export")
    import_parser.add_argument("file", type=Path, help="Statement file (CSV)")
    import_parser.add_argument("--org", type=str, help="Organisation ID")
    import_parser.add_argument(
        "--storage-path",
        type=str,
        help="Storage key of the upload (documents/<org-uuid>/...), used when --org is omitted",
    )
    import_parser.add_argument("--source-document-id", type=str, help="Originating document ID")
    import_parser.add_argument(
        "--no-detect",
        action="store_true",
        help="Skip recurring detection after import (default: import.detect_recurring_after_import)",
    )

    # detect command
    detect_parser = subparsers.add_parser(
        "detect", help="Recompute recurring charges and subscriptions"
    )
    detect_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    detect_parser.add_argument(
        "--today", type=_date_arg, help="Reference date for recency (default: today)"
    )

    # subscriptions command
    subs_parser = subparsers.add_parser("subscriptions", help="List detected subscriptions")
    subs_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    subs_parser.add_argument("--active", action="store_true", help="Only active subscriptions")

    # add-rule command
    rule_parser = subparsers.add_parser("add-rule", help="Add an organisation subscription rule")
    rule_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    rule_parser.add_argument("--vendor-key", type=str, required=True)
    rule_parser.add_argument("--name", type=str, required=True, help="Display name")
    rule_parser.add_argument("--regex", type=str, required=True, help="Description regex")
    rule_parser.add_argument("--cadence", type=str, default="monthly")

    # suggest command
    suggest_parser = subparsers.add_parser(
        "suggest", help="Suggest supporting documents for a transaction"
    )
    suggest_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    suggest_parser.add_argument("--transaction-id", type=int, required=True)

    # transactions command
    tx_parser = subparsers.add_parser("transactions", help="Query the ledger")
    tx_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    tx_parser.add_argument("--from", dest="date_from", type=_date_arg, help="From date")
    tx_parser.add_argument("--to", dest="date_to", type=_date_arg, help="To date (inclusive)")
    tx_parser.add_argument("--direction", choices=[d.value for d in Direction])
    tx_parser.add_argument("--category", type=str)
    tx_parser.add_argument(
        "--uncategorised", action="store_true", help="Only uncategorised transactions"
    )
    tx_parser.add_argument("--search", type=str, help="Text in description or counterparty")
    tx_parser.add_argument("--limit", type=int, default=100)

    # summary command
    summary_parser = subparsers.add_parser("summary", help="Inflow, outflow and net")
    summary_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    summary_parser.add_argument("--from", dest="date_from", type=_date_arg)
    summary_parser.add_argument("--to", dest="date_to", type=_date_arg)

    # trend command
    trend_parser = subparsers.add_parser("trend", help="Monthly inflow, outflow and taxes")
    trend_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    trend_parser.add_argument("--months", type=int, default=12, help="Months back (default: 12)")
    trend_parser.add_argument(
        "--today", type=_date_arg, help="Last month of the window (default: today)"
    )

    # top-categories command
    top_parser = subparsers.add_parser("top-categories", help="Categories by total amount")
    top_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    top_parser.add_argument("--from", dest="date_from", type=_date_arg)
    top_parser.add_argument("--to", dest="date_to", type=_date_arg)
    top_parser.add_argument("--limit", type=int, default=10)

    # categories command
    categories_parser = subparsers.add_parser("categories", help="List categories in use")
    categories_parser.add_argument("--org", type=str, required=True, help="Organisation ID")

    # add-document command
    doc_parser = subparsers.add_parser("add-document", help="Register a supporting document")
    doc_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    doc_parser.add_argument("--id", dest="document_id", type=str, required=True)
    doc_parser.add_argument("--title", type=str, default="")
    doc_parser.add_argument(
        "--type", dest="doc_type", choices=[t.value for t in DocumentType], default="INVOICE"
    )
    doc_parser.add_argument(
        "--metadata",
        type=str,
        default="{}",
        help='JSON object, e.g. \'{"invoice_no": "FV/1/2024", "total_gross": "123.00"}\'',
    )

    # link command
    link_parser = subparsers.add_parser("link", help="Link a document to a transaction")
    link_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    link_parser.add_argument("--document-id", type=str, required=True)
    link_parser.add_argument("--transaction-id", type=int, required=True)
    link_parser.add_argument("--remove", action="store_true", help="Remove the link instead")

    # categorize command
    cat_parser = subparsers.add_parser("categorize", help="Set a transaction's category")
    cat_parser.add_argument("--org", type=str, required=True, help="Organisation ID")
    cat_parser.add_argument("--transaction-id", type=int, required=True)
    cat_parser.add_argument("--category", type=str, required=True)
    cat_parser.add_argument("--subcategory", type=str)

    return parser


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file unless one exists."""
    if config_path.exists():
        print(f"❌ Config already exists: {config_path}")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_import(
    config: Config,
    file: Path,
    org: str | None,
    storage_path: str | None,
    source_document_id: str | None,
    detect: bool | None,
) -> int:
    """Import one statement file."""
    if not file.exists():
        print(f"❌ File not found: {file}")
        return 1

    store = StateStore(config.state_db_path)
    importer = StatementImporter(store, config)
    result = importer.import_statement(
        file.read_bytes(),
        ctx=OrgContext(org) if org else None,
        storage_path=storage_path,
        source_document_id=source_document_id,
        detect=detect,
    )
    _print_json(result.to_dict())
    return 0 if result.ok else 1


def cmd_detect(config: Config, org: str, today: str | None) -> int:
    """Run recurring detection."""
    store = StateStore(config.state_db_path)
    detector = RecurringDetector(store, config.recurring)
    result = detector.detect(OrgContext(org), date.fromisoformat(today) if today else None)
    _print_json(result.to_dict())
    return 0


def cmd_subscriptions(config: Config, org: str, active_only: bool) -> int:
    """List stored subscriptions."""
    store = StateStore(config.state_db_path)
    subs = store.list_subscriptions(OrgContext(org), active_only=active_only)
    _print_json([s.to_dict() for s in subs])
    return 0


def cmd_add_rule(
    config: Config, org: str, vendor_key: str, name: str, regex: str, cadence: str
) -> int:
    """Store an organisation subscription rule."""
    store = StateStore(config.state_db_path)
    rule_id = store.add_subscription_rule(
        OrgContext(org), SubscriptionRule(vendor_key, name, regex, cadence)
    )
    _print_json({"id": rule_id, "vendor_key": vendor_key})
    return 0


def cmd_suggest(config: Config, org: str, transaction_id: int) -> int:
    """Print document suggestions for a transaction."""
    store = StateStore(config.state_db_path)
    matcher = DocumentMatcher(config.matching)
    try:
        suggestions = matcher.suggest(store, OrgContext(org), transaction_id)
    except KeyError:
        print(f"❌ Transaction {transaction_id} not found")
        return 1
    _print_json([s.to_dict() for s in suggestions])
    return 0


def cmd_transactions(config: Config, org: str, filters: TransactionFilter) -> int:
    """Query the ledger."""
    store = StateStore(config.state_db_path)
    rows, total = store.query_transactions(OrgContext(org), filters)
    _print_json({"total": total, "transactions": [t.to_dict() for t in rows]})
    return 0


def cmd_summary(config: Config, org: str, date_from: str | None, date_to: str | None) -> int:
    """Print inflow, outflow and net."""
    store = StateStore(config.state_db_path)
    _print_json(store.summarize(OrgContext(org), date_from, date_to).to_dict())
    return 0


def cmd_trend(config: Config, org: str, months: int, today: str | None) -> int:
    """Print the monthly trend."""
    if months < 1:
        print("❌ --months must be at least 1")
        return 1
    store = StateStore(config.state_db_path)
    points = store.monthly_trend(
        OrgContext(org), months, date.fromisoformat(today) if today else None
    )
    _print_json([p.to_dict() for p in points])
    return 0


def cmd_top_categories(
    config: Config, org: str, date_from: str | None, date_to: str | None, limit: int
) -> int:
    """Print the largest categories."""
    store = StateStore(config.state_db_path)
    totals = store.top_categories(OrgContext(org), date_from, date_to, limit)
    _print_json([t.to_dict() for t in totals])
    return 0


def cmd_categories(config: Config, org: str) -> int:
    """Print the categories in use."""
    store = StateStore(config.state_db_path)
    _print_json(store.list_categories(OrgContext(org)))
    return 0


def cmd_add_document(
    config: Config, org: str, document_id: str, title: str, doc_type: str, metadata: str
) -> int:
    """Register or update a document."""
    try:
        meta = json.loads(metadata)
    except json.JSONDecodeError as e:
        print(f"❌ Invalid metadata JSON: {e}")
        return 1
    if not isinstance(meta, dict):
        print("❌ Metadata must be a JSON object")
        return 1

    store = StateStore(config.state_db_path)
    document = Document(
        id=document_id,
        org_id=OrgContext(org).org_id,
        title=title,
        doc_type=DocumentType(doc_type),
        metadata=meta,
    )
    store.upsert_document(document)
    _print_json(document.to_dict())
    return 0


def cmd_link(
    config: Config, org: str, document_id: str, transaction_id: int, remove: bool
) -> int:
    """Link or unlink a document and a transaction."""
    store = StateStore(config.state_db_path)
    ctx = OrgContext(org)
    if remove:
        removed = store.unlink_document(ctx, document_id, transaction_id)
        _print_json({"removed": removed})
        return 0 if removed else 1

    if store.get_transaction(ctx, transaction_id) is None:
        print(f"❌ Transaction {transaction_id} not found")
        return 1
    if store.get_document(ctx, document_id) is None:
        print(f"❌ Document {document_id} not found")
        return 1
    store.link_document(ctx, document_id, transaction_id)
    _print_json({"linked": True, "document_id": document_id, "transaction_id": transaction_id})
    return 0


def cmd_categorize(
    config: Config, org: str, transaction_id: int, category: str, subcategory: str | None
) -> int:
    """Set a category chosen by the user."""
    store = StateStore(config.state_db_path)
    if not store.update_transaction_category(OrgContext(org), transaction_id, category, subcategory):
        print(f"❌ Transaction {transaction_id} not found")
        return 1
    _print_json({"transaction_id": transaction_id, "category": category, "subcategory": subcategory})
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"❌ {error}")
        return 1

    # Route to command
    if parsed.command == "import":
        if not parsed.org and not parsed.storage_path:
            print("❌ Either --org or --storage-path is required")
            return 1
        return cmd_import(
            config,
            parsed.file,
            parsed.org,
            parsed.storage_path,
            parsed.source_document_id,
            detect=False if parsed.no_detect else None,
        )
    elif parsed.command == "detect":
        return cmd_detect(config, parsed.org, parsed.today)
    elif parsed.command == "subscriptions":
        return cmd_subscriptions(config, parsed.org, parsed.active)
    elif parsed.command == "add-rule":
        return cmd_add_rule(
            config, parsed.org, parsed.vendor_key, parsed.name, parsed.regex, parsed.cadence
        )
    elif parsed.command == "suggest":
        return cmd_suggest(config, parsed.org, parsed.transaction_id)
    elif parsed.command == "transactions":
        filters = TransactionFilter(
            date_from=parsed.date_from,
            date_to=parsed.date_to,
            direction=Direction(parsed.direction) if parsed.direction else None,
            category=parsed.category,
            uncategorised_only=parsed.uncategorised,
            search=parsed.search,
            limit=parsed.limit,
        )
        return cmd_transactions(config, parsed.org, filters)
    elif parsed.command == "summary":
        return cmd_summary(config, parsed.org, parsed.date_from, parsed.date_to)
    elif parsed.command == "trend":
        return cmd_trend(config, parsed.org, parsed.months, parsed.today)
    elif parsed.command == "top-categories":
        return cmd_top_categories(
            config, parsed.org, parsed.date_from, parsed.date_to, parsed.limit
        )
    elif parsed.command == "categories":
        return cmd_categories(config, parsed.org)
    elif parsed.command == "add-document":
        return cmd_add_document(
            config,
            parsed.org,
            parsed.document_id,
            parsed.title,
            parsed.doc_type,
            parsed.metadata,
        )
    elif parsed.command == "link":
        return cmd_link(config, parsed.org, parsed.document_id, parsed.transaction_id, parsed.remove)
    elif parsed.command == "categorize":
        return cmd_categorize(
            config, parsed.org, parsed.transaction_id, parsed.category, parsed.subcategory
        )
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
