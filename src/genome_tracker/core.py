"""Orchestrator: query, cross-reference, fetch, deduplicate, update the matrix."""

import logging
import os
from typing import Optional

from genome_tracker.accessions import intersect_accessions
from genome_tracker.config import TrackerConfig
from genome_tracker.dedup import deduplicate
from genome_tracker.errors import PersistenceError, UpstreamQueryError
from genome_tracker.matrix import format_row, update_matrix
from genome_tracker.models import MetadataBatch, RunSummary
from genome_tracker.sources.base import BaseAccessionSource, BaseMetadataSource
from genome_tracker.sources.datasets_cli import DatasetsCLISource
from genome_tracker.tools import ensure_tools

logger = logging.getLogger(__name__)

TAXON_ACCESSIONS_FILE = "eukaryote_accessions.txt"
PROJECT_ACCESSIONS_FILE = "project_accessions.txt"
CROSS_REFERENCED_FILE = "cross_referenced_accessions.txt"
FILTERED_METADATA_FILE = "filtered_assemblies.tsv"


class GenomeTracker:
    def __init__(
        self,
        config: TrackerConfig,
        accession_source: Optional[BaseAccessionSource] = None,
        metadata_source: Optional[BaseMetadataSource] = None,
    ):
        self.config = config
        if accession_source is None or metadata_source is None:
            tools = ensure_tools(config.tools_dir, config.allow_tool_download)
            cli = DatasetsCLISource(tools.datasets, tools.dataformat, api_key=config.api_key)
            accession_source = accession_source or cli
            metadata_source = metadata_source or cli
        self._accessions = accession_source
        self._metadata = metadata_source

    def run(self) -> RunSummary:
        cfg = self.config
        summary = RunSummary()

        logger.info("Step 1: Retrieving accessions for taxon %s", cfg.taxon_id)
        taxon_accessions = self._accessions.query_by_taxon(cfg.taxon_id)
        summary.taxon_accessions = len(taxon_accessions)
        logger.info("Found %d taxon accession(s)", summary.taxon_accessions)
        self._save(TAXON_ACCESSIONS_FILE, "".join(f"{acc}\n" for acc in taxon_accessions))

        logger.info("Step 2: Retrieving accessions for project %s", cfg.project_accession)
        project_accessions = self._accessions.query_by_accession(cfg.project_accession)
        summary.project_accessions = len(project_accessions)
        logger.info("Found %d project accession(s)", summary.project_accessions)
        self._save(PROJECT_ACCESSIONS_FILE, "".join(f"{acc}\n" for acc in project_accessions))

        logger.info("Step 3: Cross-referencing accessions")
        common = intersect_accessions(taxon_accessions, project_accessions)
        summary.intersected = len(common)
        self._save(CROSS_REFERENCED_FILE, "".join(f"{acc}\n" for acc in common))
        if common:
            logger.info("%d common accession(s)", summary.intersected)
        else:
            logger.warning(
                "No common accessions between taxon %s and project %s",
                cfg.taxon_id, cfg.project_accession,
            )

        logger.info("Step 4: Retrieving metadata for cross-referenced accessions")
        batch = self._metadata.fetch_metadata(common, cfg.fields)
        summary.metadata_rows = len(batch)
        if batch.records and len(batch.columns) <= cfg.key_field_index:
            raise UpstreamQueryError(
                f"Metadata has {len(batch.columns)} column(s) ({', '.join(batch.columns)}), "
                f"key field index is {cfg.key_field_index}"
            )

        logger.info("Step 5: Deduplicating on column %d", cfg.key_field_index)
        unique = MetadataBatch(
            columns=batch.columns,
            records=deduplicate(batch.records, cfg.key_field_index),
        )
        summary.unique_rows = len(unique)
        logger.info(
            "%d metadata row(s), %d unique assembly(ies)",
            summary.metadata_rows, summary.unique_rows,
        )
        self._save(
            FILTERED_METADATA_FILE,
            format_row(unique.columns) + "".join(format_row(rec.fields) for rec in unique.records),
        )

        logger.info("Step 6: Updating matrix %s", cfg.matrix_path)
        result = update_matrix(
            cfg.matrix_path, unique,
            key_index=cfg.key_field_index,
            url_column=cfg.url_column,
        )
        summary.appended = result.appended
        summary.matrix_rows = result.total_rows
        summary.bootstrapped = result.bootstrapped
        return summary

    def _save(self, filename: str, content: str) -> None:
        """Keep a stage's output for inspection when an intermediates dir is set."""
        if not self.config.intermediates_dir:
            return
        path = os.path.join(self.config.intermediates_dir, filename)
        try:
            os.makedirs(self.config.intermediates_dir, exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="") as fh:
                fh.write(content)
        except OSError as exc:
            raise PersistenceError(f"Cannot write {path}: {exc}") from exc
        logger.debug("Wrote %s", path)
