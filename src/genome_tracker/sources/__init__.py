"""Upstream sources of assembly accessions and metadata."""

from genome_tracker.sources.base import BaseAccessionSource, BaseMetadataSource
from genome_tracker.sources.datasets_cli import DatasetsCLISource

__all__ = ["BaseAccessionSource", "BaseMetadataSource", "DatasetsCLISource"]
