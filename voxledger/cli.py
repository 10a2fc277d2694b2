"""CLI entry point for voxledger.

Commands:
    voxledger add TEXT                 Classify a spoken phrase and store it
    voxledger list [--category C]      List stored expenses, newest first
    voxledger totals [--date DATE]     Totals per category (optionally one day)
    voxledger categories               Categories present in stored expenses
    voxledger taxonomy                 Print the configured taxonomy
    voxledger remove ID                Delete one expense
    voxledger clear                    Delete all expenses
    voxledger upload                   Replace Sheets contents with local expenses
    voxledger download                 Replace local expenses with Sheets contents
    voxledger create-sheet             Create a new spreadsheet and remember its id
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging based on VOXLEDGER_LOG_LEVEL env var."""
    level = os.environ.get("VOXLEDGER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_settings():
    from voxledger.config import Settings

    return Settings.from_env()


def _get_config(settings):
    """Load application config from config directory."""
    from voxledger.config import Config

    return Config(config_dir=settings.config_dir)


def _get_kv(settings):
    """Open the key-value store at the configured database path."""
    from voxledger.database.repository import KeyValueStore

    return KeyValueStore.open(settings.db_path)


def _get_client(settings):
    """Authorized gspread client, or None if no credential is configured."""
    from voxledger.sheets.client import BearerCredential, MissingCredential, authorize

    credential = None
    if settings.access_token:
        credential = BearerCredential(settings.access_token, settings.token_expires_at)
    try:
        return authorize(credential, service_account_file=settings.credentials_path), credential
    except MissingCredential as e:
        logger.info("Sheets not available: %s", e)
        return None, None


def _get_sync(settings, config, kv):
    """Create the configured SheetsSync layout.

    Returns None if credentials or a spreadsheet id are not configured
    (Sheets sync will be skipped).
    """
    from voxledger.database.store import SPREADSHEET_ID_KEY
    from voxledger.sheets.client import SpreadsheetConnection
    from voxledger.sheets.grid import GridSheetsSync
    from voxledger.sheets.push import RowSheetsSync

    # A saved id (created or recreated earlier) wins over the configured one
    spreadsheet_id = kv.get(SPREADSHEET_ID_KEY) or settings.spreadsheet_id
    if not spreadsheet_id:
        return None
    client, credential = _get_client(settings)
    if client is None:
        return None

    def save_id(new_id: str) -> None:
        kv.set(SPREADSHEET_ID_KEY, new_id)

    connection = SpreadsheetConnection(
        client, spreadsheet_id, credential=credential,
        title=config.spreadsheet_title, on_recreated=save_id,
    )
    layout = GridSheetsSync if config.layout == "grid" else RowSheetsSync
    return layout(connection, taxonomy=config.taxonomy, naming=config.sheet_naming())


def _get_store(settings, config, with_sync: bool = True):
    from voxledger.database.store import ExpenseStore

    kv = _get_kv(settings)
    sync = _get_sync(settings, config, kv) if with_sync else None
    return ExpenseStore(kv, sync=sync)


def _make_claude_fn(settings, timeout: float):
    """Create a Claude API callback for expense classification.

    Returns a callable (system: str, prompt: str) -> str, or None if
    ANTHROPIC_API_KEY is not set.
    """
    if not settings.anthropic_api_key:
        return None

    import anthropic

    from voxledger.classify.claude_ai import (
        ClassificationNetworkError,
        ClassificationTimeout,
    )

    client = anthropic.Anthropic(
        api_key=settings.anthropic_api_key, timeout=timeout, max_retries=0,
    )

    def claude_fn(system: str, prompt: str) -> str:
        try:
            response = client.messages.create(
                model=settings.classifier_model,
                max_tokens=1024,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise ClassificationTimeout(str(e)) from e
        except (anthropic.APIConnectionError, anthropic.APIStatusError) as e:
            raise ClassificationNetworkError(str(e)) from e
        return response.content[0].text

    return claude_fn


def _format_expense(expense) -> str:
    sub = f" / {expense.subcategory}" if expense.subcategory else ""
    desc = f"  {expense.description}" if expense.description else ""
    return (f"{expense.id}  {expense.effective_date} {expense.effective_time}  "
            f"{expense.amount:>9.2f} {expense.currency}  {expense.category}{sub}{desc}")


# ── Commands ─────────────────────────────────────────────


def cmd_add(args: argparse.Namespace) -> int:
    """Classify a phrase, store it and mirror it to Sheets."""
    from voxledger.classify.pipeline import STORED, ExpenseClassifier, VoiceExpensePipeline

    settings = _get_settings()
    config = _get_config(settings)
    store = _get_store(settings, config)
    store.load(reconcile=False)

    classifier = ExpenseClassifier(
        taxonomy=config.taxonomy,
        claude_fn=_make_claude_fn(settings, config.classifier_timeout),
        timeout=config.classifier_timeout,
        default_currency=config.default_currency,
        fallback_category=config.fallback_category,
    )
    pipeline = VoiceExpensePipeline(classifier, store)
    result = pipeline.process(args.text)
    store.kv.close()

    if result.expense is not None:
        print(f"Added: {_format_expense(result.expense)}")
    if result.status == STORED:
        return 0
    if result.error:
        print(f"Error: {result.error}")
    return 1


def cmd_list(args: argparse.Namespace) -> int:
    """List stored expenses, newest first."""
    settings = _get_settings()
    store = _get_store(settings, _get_config(settings), with_sync=False)
    expenses = store.load(reconcile=False)
    store.kv.close()

    if args.category:
        expenses = [e for e in expenses if e.category == args.category]
    if not expenses:
        print("No expenses.")
        return 0
    for expense in expenses:
        print(_format_expense(expense))
    print(f"\n{len(expenses)} expense(s)")
    return 0


def cmd_totals(args: argparse.Namespace) -> int:
    """Print totals per category."""
    settings = _get_settings()
    store = _get_store(settings, _get_config(settings), with_sync=False)
    store.load(reconcile=False)
    store.kv.close()

    categories = store.categories()
    if not categories:
        print("No expenses.")
        return 0
    for category in categories:
        if args.date:
            total = store.total_by_category_and_date(category, args.date)
        else:
            total = store.total_by_category(category)
        print(f"  {category:<24} {total:>10.2f}")
    return 0


def cmd_categories(args: argparse.Namespace) -> int:
    """Print categories present in stored expenses."""
    settings = _get_settings()
    store = _get_store(settings, _get_config(settings), with_sync=False)
    store.load(reconcile=False)
    store.kv.close()

    for category in store.categories():
        print(category)
    return 0


def cmd_taxonomy(args: argparse.Namespace) -> int:
    """Print the configured taxonomy."""
    config = _get_config(_get_settings())
    for category, subcategories in config.taxonomy.items():
        print(category)
        for sub in subcategories:
            print(f"  - {sub}")
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    settings = _get_settings()
    store = _get_store(settings, _get_config(settings), with_sync=False)
    store.load(reconcile=False)
    removed = store.remove(args.id)
    store.kv.close()

    if not removed:
        print(f"No expense with id {args.id}")
        return 1
    print(f"Removed {args.id}")
    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    settings = _get_settings()
    store = _get_store(settings, _get_config(settings), with_sync=False)
    store.clear()
    store.kv.close()
    print("All expenses deleted.")
    return 0


def cmd_upload(args: argparse.Namespace) -> int:
    """Replace Sheets contents with the local expenses."""
    from voxledger.sheets.base import RemoteSyncError

    settings = _get_settings()
    store = _get_store(settings, _get_config(settings))
    if store.sync is None:
        print("Error: Sheets not configured. Set VOXLEDGER_SPREADSHEET_ID and "
              "VOXLEDGER_CREDENTIALS or VOXLEDGER_ACCESS_TOKEN.")
        store.kv.close()
        return 1

    store.load(reconcile=False)
    try:
        count = store.upload_all()
    except RemoteSyncError as e:
        print(f"Error: {e}")
        return 1
    finally:
        store.kv.close()
    print(f"Uploaded {count} expense(s).")
    return 0


def cmd_download(args: argparse.Namespace) -> int:
    """Replace local expenses with the Sheets contents."""
    from voxledger.sheets.base import RemoteSyncError

    settings = _get_settings()
    store = _get_store(settings, _get_config(settings))
    if store.sync is None:
        print("Error: Sheets not configured. Set VOXLEDGER_SPREADSHEET_ID and "
              "VOXLEDGER_CREDENTIALS or VOXLEDGER_ACCESS_TOKEN.")
        store.kv.close()
        return 1

    try:
        expenses = store.download_all()
    except RemoteSyncError as e:
        print(f"Error: {e}")
        return 1
    finally:
        store.kv.close()
    print(f"Downloaded {len(expenses)} expense(s).")
    return 0


def cmd_create_sheet(args: argparse.Namespace) -> int:
    """Create a new spreadsheet and save its id."""
    from voxledger.database.store import ExpenseStore
    from voxledger.sheets.client import create_spreadsheet

    settings = _get_settings()
    config = _get_config(settings)
    client, _ = _get_client(settings)
    if client is None:
        print("Error: Google credential not configured. Set VOXLEDGER_CREDENTIALS "
              "or VOXLEDGER_ACCESS_TOKEN.")
        return 1

    spreadsheet = create_spreadsheet(client, args.title or config.spreadsheet_title)
    store = ExpenseStore(_get_kv(settings))
    store.save_spreadsheet_id(spreadsheet.id)
    store.kv.close()
    print(f"Created spreadsheet {spreadsheet.id}")
    return 0


_COMMANDS = {
    "add": cmd_add,
    "list": cmd_list,
    "totals": cmd_totals,
    "categories": cmd_categories,
    "taxonomy": cmd_taxonomy,
    "remove": cmd_remove,
    "clear": cmd_clear,
    "upload": cmd_upload,
    "download": cmd_download,
    "create-sheet": cmd_create_sheet,
}


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="voxledger",
        description="Voice expense tracker with Google Sheets sync",
    )
    subparsers = parser.add_subparsers(dest="command")

    # add
    add_p = subparsers.add_parser("add", help="Classify a spoken phrase and store it")
    add_p.add_argument("text", help="Free-form expense text, e.g. 'кофе 3.50 евро'")

    # list
    list_p = subparsers.add_parser("list", help="List stored expenses")
    list_p.add_argument("--category", help="Only this category")

    # totals
    totals_p = subparsers.add_parser("totals", help="Totals per category")
    totals_p.add_argument("--date", help="Only this day (YYYY-MM-DD)")

    # categories / taxonomy
    subparsers.add_parser("categories", help="Categories present in stored expenses")
    subparsers.add_parser("taxonomy", help="Print the configured taxonomy")

    # remove / clear
    remove_p = subparsers.add_parser("remove", help="Delete one expense")
    remove_p.add_argument("id", help="Expense id")
    subparsers.add_parser("clear", help="Delete all expenses")

    # sync
    subparsers.add_parser("upload", help="Replace Sheets contents with local expenses")
    subparsers.add_parser("download", help="Replace local expenses with Sheets contents")
    create_p = subparsers.add_parser("create-sheet", help="Create a new spreadsheet")
    create_p.add_argument("--title", help="Spreadsheet title")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
