from abc import ABC, abstractmethod

from yinyang.models.cache_entry import CacheEntry
from yinyang.models.request import RequestRecord


class AbstractRequestLedger(ABC):
    @abstractmethod
    def create(self, record: RequestRecord) -> None:
        """Write a pending record. Raises LedgerConflict if the id already exists."""

    @abstractmethod
    def finalize(self, record: RequestRecord) -> None:
        """Write the terminal record once. Raises LedgerConflict if already terminal."""

    @abstractmethod
    def read(self, request_id: str) -> RequestRecord | None:
        """Return the stored record, or None if the id is unknown."""


class AbstractInputCacheRepository(ABC):
    @abstractmethod
    def find_by_source_url(self, source_url: str) -> CacheEntry | None:
        """Exact-match lookup of a previously persisted source URL."""

    @abstractmethod
    def insert(self, entry: CacheEntry) -> bool:
        """Record a mapping. Returns False if the source URL was already recorded."""


class AbstractConfigRepository(ABC):
    @abstractmethod
    def get(self, name: str) -> str | None:
        """Return the raw config value for name, or None when unset."""

    @abstractmethod
    def set(self, name: str, value: str) -> None:
        """Store a config value."""
