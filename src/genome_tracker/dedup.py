"""First-seen-wins deduplication of metadata records."""

from typing import Iterable, List

from genome_tracker.models import MetadataRecord


def deduplicate(records: Iterable[MetadataRecord], key_index: int) -> List[MetadataRecord]:
    """Keep the first record for each primary key, in original order."""
    seen = {}
    for rec in records:
        key = rec.key(key_index)
        if key not in seen:
            seen[key] = rec
    return list(seen.values())
