"""CLI command for storing an API key.

Usage:
    python -m visioncore.cli set-key [--key KEY] [--user-id USER_ID]
    python -m visioncore.cli set-key --clear [--user-id USER_ID]

Without ``--user-id`` the key is cached in the local store (HISTORY_DIR) and
used by ``batch`` runs on this machine. With ``--user-id`` it is encrypted with
SERVER_ENCRYPTION_KEY and written to the credential store for that user.
"""

import asyncio
import getpass
import sys
from argparse import Namespace, _SubParsersAction

import structlog
from sqlalchemy.exc import SQLAlchemyError

from visioncore.core.config import Settings, configure_logging
from visioncore.core.database import create_engine, create_tables, setup_db_session
from visioncore.services.crypto.vault import KeyVault
from visioncore.services.history import JsonFileKeyValueStore
from visioncore.services.key_resolver import MANUAL_KEY_STORE_KEY
from visioncore.uow import create_uow_factory

logger = structlog.get_logger()


def add_parser(subparsers: _SubParsersAction) -> None:
    """Register the ``set-key`` command."""
    parser = subparsers.add_parser(
        "set-key",
        help="Store an API key locally or for a user",
        description="Store a generation API key (prompted when --key is omitted)",
    )
    parser.add_argument("--key", help="API key value (prompted if omitted)")
    parser.add_argument(
        "--user-id",
        help="Store the key encrypted in the credential store for this user",
    )
    parser.add_argument(
        "--clear",
        action="store_true",
        help="Remove the key instead of setting one (the user's stored key with --user-id)",
    )
    parser.set_defaults(handler=handle)


async def store_user_key(settings: Settings, user_id: str, api_key: str) -> None:
    """Encrypt ``api_key`` and upsert it for ``user_id``."""
    vault = KeyVault(settings.server_encryption_key)
    engine = create_engine(settings.database_url, settings.db_pool_size)
    try:
        await create_tables(engine)
        uow_factory = create_uow_factory(setup_db_session(engine))
        async with await uow_factory() as uow:
            await uow.credentials.upsert_encrypted_key(user_id, vault.encrypt(api_key))
    finally:
        await engine.dispose()


async def clear_user_key(settings: Settings, user_id: str) -> bool:
    """Delete the stored key for ``user_id``. Returns False if there was none."""
    engine = create_engine(settings.database_url, settings.db_pool_size)
    try:
        await create_tables(engine)
        uow_factory = create_uow_factory(setup_db_session(engine))
        async with await uow_factory() as uow:
            return await uow.credentials.delete(user_id)
    finally:
        await engine.dispose()


def _clear(args: Namespace, settings: Settings, store: JsonFileKeyValueStore) -> int:
    if not args.user_id:
        store.remove(MANUAL_KEY_STORE_KEY)
        logger.info("cli.key.cleared", scope="local")
        print("Local API key removed")
        return 0

    try:
        removed = asyncio.run(clear_user_key(settings, args.user_id))
    except SQLAlchemyError as e:
        logger.error("cli.key.clear_failed", user_id=args.user_id, error=str(e))
        print(f"Error: could not write credential store: {e}", file=sys.stderr)
        return 1

    logger.info("cli.key.cleared", scope="user", user_id=args.user_id, removed=removed)
    if removed:
        print(f"API key removed for user {args.user_id}")
    else:
        print(f"No API key stored for user {args.user_id}")
    return 0


def handle(args: Namespace) -> int:
    """Synchronous handler for the ``set-key`` command."""
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)
    store = JsonFileKeyValueStore(settings.history_dir)

    if args.clear:
        return _clear(args, settings, store)

    api_key = (args.key or getpass.getpass("API key: ")).strip()
    if not api_key:
        print("Error: API key is required", file=sys.stderr)
        return 1

    if not args.user_id:
        store.set(MANUAL_KEY_STORE_KEY, api_key)
        logger.info("cli.key.saved", scope="local")
        print(f"API key saved to {store.directory}")
        return 0

    try:
        asyncio.run(store_user_key(settings, args.user_id, api_key))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except SQLAlchemyError as e:
        logger.error("cli.key.save_failed", user_id=args.user_id, error=str(e))
        print(f"Error: could not write credential store: {e}", file=sys.stderr)
        return 1

    logger.info("cli.key.saved", scope="user", user_id=args.user_id)
    print(f"API key stored for user {args.user_id}")
    return 0
