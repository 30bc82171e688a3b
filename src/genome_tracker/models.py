"""Records passed between sources, the deduplicator and the matrix updater."""

from dataclasses import dataclass, field
from typing import List, Tuple

DEFAULT_FIELDS = ["organism-name", "organism-tax-id", "accession"]
DEFAULT_KEY_FIELD_INDEX = 2
DEFAULT_URL_COLUMN = "download_url"


@dataclass(frozen=True)
class MetadataRecord:
    fields: Tuple[str, ...]

    def key(self, key_index: int) -> str:
        return self.fields[key_index].strip()

    def to_row(self, *extra: str) -> List[str]:
        return list(self.fields) + list(extra)


@dataclass
class MetadataBatch:
    """Header plus records, as returned by a metadata source."""

    columns: List[str]
    records: List[MetadataRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class UpdateResult:
    appended: int
    total_rows: int  # excluding the header
    bootstrapped: bool = False


@dataclass
class RunSummary:
    taxon_accessions: int = 0
    project_accessions: int = 0
    intersected: int = 0
    metadata_rows: int = 0
    unique_rows: int = 0
    appended: int = 0
    matrix_rows: int = 0
    bootstrapped: bool = False
