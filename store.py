# store.py
"""Key-value document store on top of the ``records`` table.

Keys are slash paths (``promo_codes/OOR...``, ``credentials/cred_1``). The
store offers point reads, whole-document writes and partial patches; there is
no multi-key transaction and no server-side increment. Each document carries a
revision so callers can make a patch conditional on what they read.
"""
import logging
from typing import Any, NamedTuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from models import Record

logger = logging.getLogger(__name__)

PROMO_CODES = "promo_codes"
TRANSACTIONS = "transactions"
SLOTS = "settings/slots"
CREDENTIALS = "credentials"
FLAGS = "settings/flags"
PLATFORMS = "settings/platforms"
MAIL_FETCH_LOCKS = "locks/mail_fetch"


def key_for(namespace: str, ident: str) -> str:
    return f"{namespace}/{ident}"


class StoreError(Exception):
    """Base class for store-level failures."""


class KeyExists(StoreError):
    pass


class MissingKey(StoreError):
    pass


class Conflict(StoreError):
    """The document changed since the revision the caller read."""


class StoredRecord(NamedTuple):
    key: str
    data: dict[str, Any]
    revision: int


def _snapshot(row: Record) -> StoredRecord:
    return StoredRecord(key=row.key, data=dict(row.data or {}), revision=row.revision)


class Store:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def get(self, key: str) -> StoredRecord | None:
        with self._session_factory() as db:
            row = db.get(Record, key)
            return _snapshot(row) if row is not None else None

    def exists(self, key: str) -> bool:
        with self._session_factory() as db:
            stmt = select(Record.key).where(Record.key == key)
            return db.execute(stmt).scalar_one_or_none() is not None

    def put(self, key: str, data: dict[str, Any]) -> int:
        """Create or replace a whole document; returns the new revision."""
        with self._session_factory() as db:
            row = db.get(Record, key)
            if row is None:
                row = Record(key=key, data=dict(data))
                db.add(row)
            else:
                row.data = dict(data)
            db.commit()
            return row.revision

    def create(self, key: str, data: dict[str, Any]) -> int:
        """Insert a document that must not exist yet."""
        with self._session_factory() as db:
            row = Record(key=key, data=dict(data))
            db.add(row)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise KeyExists(key) from exc
            return row.revision

    def patch(
        self,
        key: str,
        fields: dict[str, Any],
        expected_revision: int | None = None,
    ) -> int:
        """Merge ``fields`` into a document.

        With ``expected_revision`` the write only lands if nobody else wrote
        the document in between; otherwise ``Conflict`` is raised.
        """
        with self._session_factory() as db:
            row = db.get(Record, key)
            if row is None:
                raise MissingKey(key)
            if expected_revision is not None and row.revision != expected_revision:
                raise Conflict(key)
            row.data = {**(row.data or {}), **fields}
            try:
                db.commit()
            except StaleDataError as exc:
                db.rollback()
                raise Conflict(key) from exc
            return row.revision

    def scan(self, prefix: str) -> list[StoredRecord]:
        """All documents under ``prefix/``, ordered by key."""
        with self._session_factory() as db:
            stmt = (
                select(Record)
                .where(Record.key.startswith(f"{prefix}/", autoescape=True))
                .order_by(Record.key)
            )
            return [_snapshot(row) for row in db.execute(stmt).scalars()]


TRANSIENT_ERRORS = (StoreError, SQLAlchemyError)
