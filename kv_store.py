"""
Key-value store used for every cached statistic and the listening-time ledger.

Components never reach for the database directly; they are handed a KVStore
so that the backing store can be swapped (tests use an in-memory fake).
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from errors import CacheStoreUnavailable

logger = logging.getLogger(__name__)


class KVStore:
    """get/put/delete/list-by-prefix with optional TTL in seconds"""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def list_keys(self, prefix: str) -> List[str]:
        raise NotImplementedError


class SQLKVStore(KVStore):
    """KVStore over the cache_entry table"""

    def __init__(self, db):
        self.db = db

    def _fail(self, operation, key, error):
        self.db.session.rollback()
        logger.error(f"KV {operation} failed for '{key}': {error}")
        return CacheStoreUnavailable(f"KV {operation} failed for '{key}'")

    def get(self, key):
        from models import CacheEntry

        try:
            entry = self.db.session.get(CacheEntry, key)
            if entry is None:
                return None
            if entry.is_expired():
                self.db.session.delete(entry)
                self.db.session.commit()
                logger.debug(f"KV entry expired: {key}")
                return None
            return entry.value
        except SQLAlchemyError as e:
            raise self._fail('get', key, e) from e

    def put(self, key, value, ttl=None):
        from models import CacheEntry

        expires_at = datetime.utcnow() + timedelta(seconds=ttl) if ttl else None
        try:
            entry = self.db.session.get(CacheEntry, key)
            if entry is None:
                entry = CacheEntry(key=key, value=value, expires_at=expires_at)
                self.db.session.add(entry)
            else:
                entry.value = value
                entry.expires_at = expires_at
            self.db.session.commit()
        except SQLAlchemyError as e:
            raise self._fail('put', key, e) from e

    def delete(self, key):
        from models import CacheEntry

        try:
            CacheEntry.query.filter_by(key=key).delete()
            self.db.session.commit()
        except SQLAlchemyError as e:
            raise self._fail('delete', key, e) from e

    def list_keys(self, prefix):
        from models import CacheEntry

        now = datetime.utcnow()
        try:
            rows = (
                self.db.session.query(CacheEntry.key)
                .filter(CacheEntry.key.startswith(prefix, autoescape=True))
                .filter((CacheEntry.expires_at.is_(None)) | (CacheEntry.expires_at > now))
                .order_by(CacheEntry.key)
                .all()
            )
            return [row.key for row in rows]
        except SQLAlchemyError as e:
            raise self._fail('list', prefix, e) from e
