"""
Encrypt wiki titles and content that are still stored as plaintext.

Covers wiki_documents and wiki_revisions. Values that already look like
encryption tokens are skipped, so the script can be re-run safely.

Usage:
    python -m family_helper.scripts.encrypt_wiki_documents [--dry-run]
"""
from __future__ import annotations

import argparse
import logging
from typing import Callable, Dict, Optional

from sqlalchemy import Table, select, update

from family_helper.core.config import settings
from family_helper.core.database import get_db_session, wiki_documents, wiki_revisions
from family_helper.core.logging import LOGGER_NAME, configure_logging
from family_helper.features.wiki.encryption import EncryptionService, get_encryption_service, is_encrypted

logger = logging.getLogger(f"{LOGGER_NAME}.scripts")


def _encrypt_table(
    session_factory: Callable,
    table: Table,
    key_column: str,
    service: EncryptionService,
    dry_run: bool,
) -> Dict[str, int]:
    counts = {"checked": 0, "encrypted": 0, "skipped": 0}
    key = table.c[key_column]

    with session_factory() as session:
        rows = session.execute(select(key, table.c.title, table.c.content)).fetchall()

        for row in rows:
            counts["checked"] += 1
            values = {}
            if row.title and not is_encrypted(row.title):
                values["title"] = service.encrypt(row.title)
            if row.content and not is_encrypted(row.content):
                values["content"] = service.encrypt(row.content)

            if not values:
                counts["skipped"] += 1
                continue

            counts["encrypted"] += 1
            if not dry_run:
                session.execute(update(table).where(key == row[0]).values(**values))
            logger.info(f"{'would encrypt' if dry_run else 'encrypted'} {table.name} {row[0]}")

        if not dry_run:
            session.commit()

    return counts


def encrypt_wiki_documents(
    *,
    dry_run: bool = False,
    session_factory: Callable = get_db_session,
    service: Optional[EncryptionService] = None,
) -> Dict:
    service = service or get_encryption_service()
    report = {
        "documents": _encrypt_table(session_factory, wiki_documents, "document_id", service, dry_run),
        "revisions": _encrypt_table(session_factory, wiki_revisions, "revision_id", service, dry_run),
        "dry_run": dry_run,
    }
    return report


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Encrypt plaintext wiki documents and revisions.")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing.")
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    if not settings.MESSAGE_ENCRYPTION_KEY:
        logger.error("MESSAGE_ENCRYPTION_KEY is not set; refusing to run")
        return 1

    report = encrypt_wiki_documents(dry_run=args.dry_run)
    print(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
