"""Shared fixtures for genome-tracker tests."""

import os
import stat

import pytest

from genome_tracker.models import MetadataBatch, MetadataRecord
from genome_tracker.sources.base import BaseAccessionSource, BaseMetadataSource

DATAFORMAT_COLUMNS = ["Organism Name", "Organism Taxonomic ID", "Assembly Accession"]


def write_script(path, body: str) -> str:
    """Write an executable /bin/sh script and return its path."""
    path = str(path)
    with open(path, "w") as fh:
        fh.write("#!/bin/sh\n" + body)
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def read_calls(script_path: str):
    """Argument lines logged by a fake tool, one per invocation."""
    calls_file = f"{script_path}.calls"
    if not os.path.exists(calls_file):
        return []
    with open(calls_file) as fh:
        return [line.rstrip("\n") for line in fh]


def make_batch(columns, *rows) -> MetadataBatch:
    return MetadataBatch(
        columns=list(columns),
        records=[MetadataRecord(tuple(r)) for r in rows],
    )


class FakeSource(BaseAccessionSource, BaseMetadataSource):
    """In-memory stand-in for NCBI Datasets."""

    def __init__(self, taxon, project, rows, columns=DATAFORMAT_COLUMNS, key_index=2):
        self.taxon = list(taxon)
        self.project = list(project)
        self.rows = [tuple(r) for r in rows]
        self.columns = list(columns)
        self.key_index = key_index
        self.metadata_calls = []

    def query_by_taxon(self, taxon_id):
        return list(self.taxon)

    def query_by_accession(self, accession):
        return list(self.project)

    def fetch_metadata(self, accessions, fields):
        self.metadata_calls.append(list(accessions))
        if not accessions:
            return MetadataBatch(columns=list(fields))
        wanted = set(accessions)
        return MetadataBatch(
            columns=list(self.columns),
            records=[MetadataRecord(r) for r in self.rows if r[self.key_index] in wanted],
        )


# --- Fake NCBI command-line tools ---

FAKE_DATASETS = """\
echo "$*" >> "$0.calls"
case "$3" in
  taxon)
    printf 'GCA_000000001.1\\nGCA_000000002.1\\nGCA_000000003.1\\n'
    ;;
  accession)
    if [ "$4" = "--inputfile" ]; then
      printf 'Organism Name\\tOrganism Taxonomic ID\\tAssembly Accession\\n'
      while read -r acc; do
        printf 'Species %s\\t2759\\t%s\\n' "$acc" "$acc"
      done < "$5"
    else
      printf ' GCA_000000002.1\\nGCA_000000003.1 \\n\\nGCA_000000004.1\\n'
    fi
    ;;
esac
"""

FAKE_DATAFORMAT = """\
echo "$*" >> "$0.calls"
cat
"""

FAILING_TOOL = """\
echo "Error: internal server error" >&2
exit 3
"""

VERSION_ONLY_TOOL = """\
echo "datasets version: 16.0.0"
"""


@pytest.fixture
def fake_tools(tmp_path):
    """Paths of fake `datasets` and `dataformat` executables."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    datasets = write_script(bin_dir / "datasets", FAKE_DATASETS)
    dataformat = write_script(bin_dir / "dataformat", FAKE_DATAFORMAT)
    return datasets, dataformat


@pytest.fixture
def failing_tool(tmp_path):
    return write_script(tmp_path / "failing-datasets", FAILING_TOOL)


@pytest.fixture
def matrix_path(tmp_path):
    return str(tmp_path / "matrices" / "assemblies.tsv")
