"""Query NCBI Datasets through the `datasets` and `dataformat` command-line tools."""

import logging
import os
import subprocess
import tempfile
from typing import List, Optional, Sequence

from genome_tracker.accessions import parse_accessions
from genome_tracker.errors import UpstreamQueryError
from genome_tracker.models import MetadataBatch, MetadataRecord
from genome_tracker.sources.base import BaseAccessionSource, BaseMetadataSource

logger = logging.getLogger(__name__)


class DatasetsCLISource(BaseAccessionSource, BaseMetadataSource):
    """Runs ``datasets summary genome ... | dataformat tsv genome ...``.

    Each pipeline stage runs to completion before the next starts; the
    JSON-lines report is held in memory between the two tools.
    """

    def __init__(
        self,
        datasets_exe: str = "datasets",
        dataformat_exe: str = "dataformat",
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._datasets = datasets_exe
        self._dataformat = dataformat_exe
        self._api_key = api_key
        self._timeout = timeout

    def query_by_taxon(self, taxon_id: str) -> List[str]:
        return self._query_ids(["taxon", str(taxon_id)])

    def query_by_accession(self, accession: str) -> List[str]:
        return self._query_ids(["accession", accession])

    def fetch_metadata(self, accessions: Sequence[str], fields: Sequence[str]) -> MetadataBatch:
        if not accessions:
            return MetadataBatch(columns=list(fields))

        fd, input_path = tempfile.mkstemp(prefix="accessions.", suffix=".txt")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.writelines(f"{acc}\n" for acc in accessions)
            report = self._run(self._summary_cmd(["accession", "--inputfile", input_path]))
        finally:
            os.remove(input_path)

        table = self._run(self._format_cmd(fields, elide_header=False), stdin=report)
        batch = parse_metadata_table(table, fields)
        logger.debug("dataformat returned %d row(s)", len(batch))
        return batch

    def _query_ids(self, target: List[str]) -> List[str]:
        report = self._run(self._summary_cmd(target + ["--report", "ids_only"]))
        ids = self._run(self._format_cmd(["accession"], elide_header=True), stdin=report)
        return parse_accessions(ids.splitlines())

    def _summary_cmd(self, target: List[str]) -> List[str]:
        cmd = [self._datasets, "summary", "genome"] + target + ["--as-json-lines"]
        if self._api_key:
            cmd += ["--api-key", self._api_key]
        return cmd

    def _format_cmd(self, fields: Sequence[str], elide_header: bool) -> List[str]:
        cmd = [self._dataformat, "tsv", "genome", "--fields", ",".join(fields)]
        if elide_header:
            cmd.append("--elide-header")
        return cmd

    def _redacted(self, cmd: List[str]) -> List[str]:
        if not self._api_key:
            return cmd
        return ["***" if part == self._api_key else part for part in cmd]

    def _run(self, cmd: List[str], stdin: Optional[str] = None) -> str:
        shown = self._redacted(cmd)
        logger.debug("Running: %s", " ".join(shown))
        try:
            proc = subprocess.run(
                cmd,
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise UpstreamQueryError(f"Timed out after {self._timeout}s", shown) from exc
        except OSError as exc:
            raise UpstreamQueryError(f"Cannot run {cmd[0]}: {exc}", shown) from exc

        if proc.returncode != 0:
            raise UpstreamQueryError(
                f"{os.path.basename(cmd[0])} exited with status {proc.returncode}",
                shown,
                proc.stderr or "",
            )
        return proc.stdout


def parse_metadata_table(text: str, fields: Sequence[str]) -> MetadataBatch:
    """Parse ``dataformat tsv`` output (header line first) into a batch."""
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return MetadataBatch(columns=list(fields))

    columns = lines[0].split("\t")
    records = []
    for line_number, line in enumerate(lines[1:], start=2):
        values = line.split("\t")
        if len(values) != len(columns):
            raise UpstreamQueryError(
                f"dataformat line {line_number} has {len(values)} column(s), "
                f"header has {len(columns)}"
            )
        records.append(MetadataRecord(tuple(values)))
    return MetadataBatch(columns=columns, records=records)
