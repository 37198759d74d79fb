from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from ..database import Base


class KVCacheEntry(Base):
    """
    Plain key/value rows backing the score cache.
    `value` holds the JSON payload exactly as the cache wrote it; expiry is decided
    by the cache from the timestamp inside the payload, not by this table.
    """
    __tablename__ = "kv_cache"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<KVCacheEntry(key={self.key[:48]})>"
