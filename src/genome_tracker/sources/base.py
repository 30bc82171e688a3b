"""Abstract base classes for upstream accession and metadata sources."""

from abc import ABC, abstractmethod
from typing import List, Sequence

from genome_tracker.models import MetadataBatch


class BaseAccessionSource(ABC):
    @abstractmethod
    def query_by_taxon(self, taxon_id: str) -> List[str]:
        """Return accessions of all assemblies under a taxon. Raises on failure."""
        ...

    @abstractmethod
    def query_by_accession(self, accession: str) -> List[str]:
        """Return accessions matching an assembly or BioProject accession."""
        ...


class BaseMetadataSource(ABC):
    @abstractmethod
    def fetch_metadata(self, accessions: Sequence[str], fields: Sequence[str]) -> MetadataBatch:
        """Return one record per assembly, columns in ``fields`` order."""
        ...
