from dataclasses import dataclass


@dataclass(frozen=True)
class CacheEntry:
    source_url: str
    content_type: str
    storage_id: str
