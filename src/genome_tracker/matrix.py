"""Incremental, append-only updates of the assembly tracking matrix.

The matrix is a tab-separated file: one header row, then one row per
assembly. The column at the configured key index holds the assembly
accession and is unique across rows; the last column holds a download URL
derived from that accession.

Existing rows are never rewritten. The first run writes the whole file
through a temporary file and ``os.replace``; later runs render the new rows
into a delta, write and verify it, and only then append it to the matrix.
A failed append is rolled back by truncating to the original size.

Only one update may run against a given matrix at a time. Callers that can
overlap (e.g. two cron jobs) must serialise themselves with a lock file.
"""

import logging
import os
import tempfile
from typing import List, Sequence, Set, Tuple

from genome_tracker.dedup import deduplicate
from genome_tracker.errors import InvalidRecordError, MalformedMatrixError, PersistenceError
from genome_tracker.models import (
    DEFAULT_KEY_FIELD_INDEX,
    DEFAULT_URL_COLUMN,
    MetadataBatch,
    MetadataRecord,
    UpdateResult,
)

logger = logging.getLogger(__name__)

ENA_FASTA_URL = "https://www.ebi.ac.uk/ena/browser/api/fasta/"
ENA_FASTA_QUERY = "?download=true&gzip=true"

MATRIX_FILE_MODE = 0o644


def derive_url(key: str) -> str:
    """Gzipped FASTA download URL for an assembly accession."""
    return f"{ENA_FASTA_URL}{key}{ENA_FASTA_QUERY}"


def format_row(values: Sequence[str]) -> str:
    for value in values:
        if "\t" in value or "\n" in value or "\r" in value:
            raise InvalidRecordError(f"Field contains a tab or newline: {value!r}")
    return "\t".join(values) + "\n"


def read_matrix(path: str, key_index: int = DEFAULT_KEY_FIELD_INDEX) -> Tuple[List[str], Set[str]]:
    """Return the header and the set of primary keys of an existing matrix.

    Raises MalformedMatrixError for any row that does not have exactly as
    many columns as the header, has an empty key, or repeats a key.
    """
    try:
        return _parse_matrix(path, key_index)
    except UnicodeDecodeError as exc:
        raise MalformedMatrixError(path, f"not valid UTF-8 ({exc.reason})") from exc


def _parse_matrix(path: str, key_index: int) -> Tuple[List[str], Set[str]]:
    header: List[str] = []
    keys: Set[str] = set()
    with open(path, encoding="utf-8", newline="") as fh:
        for line_number, line in enumerate(fh, start=1):
            values = line.rstrip("\r\n").split("\t")
            if line_number == 1:
                if len(values) <= key_index:
                    raise MalformedMatrixError(
                        path,
                        f"header has {len(values)} column(s), key index is {key_index}",
                        line_number,
                    )
                header = values
                continue
            if len(values) != len(header):
                raise MalformedMatrixError(
                    path,
                    f"expected {len(header)} columns, found {len(values)}",
                    line_number,
                )
            key = values[key_index].strip()
            if not key:
                raise MalformedMatrixError(path, "empty key field", line_number)
            if key in keys:
                raise MalformedMatrixError(path, f"duplicate key {key!r}", line_number)
            keys.add(key)
    return header, keys


def _render(records: Sequence[MetadataRecord], key_index: int) -> str:
    return "".join(
        format_row(rec.to_row(derive_url(rec.key(key_index)))) for rec in records
    )


def _check_batch(batch: MetadataBatch, key_index: int) -> None:
    if batch.records and len(batch.columns) <= key_index:
        raise InvalidRecordError(
            f"Batch has {len(batch.columns)} column(s), key index is {key_index}"
        )
    for rec in batch.records:
        if len(rec.fields) != len(batch.columns):
            raise InvalidRecordError(
                f"Record {rec.fields!r} has {len(rec.fields)} fields, "
                f"expected {len(batch.columns)}"
            )
        if not rec.key(key_index):
            raise InvalidRecordError(f"Record {rec.fields!r} has an empty key field")


def update_matrix(
    matrix_path: str,
    batch: MetadataBatch,
    key_index: int = DEFAULT_KEY_FIELD_INDEX,
    url_column: str = DEFAULT_URL_COLUMN,
) -> UpdateResult:
    """Append the records of ``batch`` whose key is not yet in the matrix.

    Creates the matrix (header + all rows) when it is missing or empty.
    Repeated keys inside ``batch`` are collapsed first-seen-wins, so the
    batch need not be deduplicated by the caller.
    """
    _check_batch(batch, key_index)
    records = deduplicate(batch.records, key_index)

    if not os.path.exists(matrix_path) or os.path.getsize(matrix_path) == 0:
        header = format_row(list(batch.columns) + [url_column])
        _write_new(matrix_path, header + _render(records, key_index))
        logger.info("Created matrix %s with %d row(s)", matrix_path, len(records))
        return UpdateResult(appended=len(records), total_rows=len(records), bootstrapped=True)

    try:
        header, existing = read_matrix(matrix_path, key_index)
    except OSError as exc:
        raise PersistenceError(f"Cannot read matrix {matrix_path}: {exc}") from exc
    new_records = [rec for rec in records if rec.key(key_index) not in existing]
    if not new_records:
        logger.info("No new rows for %s (%d existing)", matrix_path, len(existing))
        return UpdateResult(appended=0, total_rows=len(existing))

    data_columns = header[:-1]
    if len(data_columns) != len(batch.columns):
        raise MalformedMatrixError(
            matrix_path,
            f"matrix has {len(data_columns)} data column(s) plus {header[-1]!r}, "
            f"new rows have {len(batch.columns)}",
        )
    if data_columns != list(batch.columns):
        logger.warning(
            "Column names differ from matrix header: %s vs %s",
            batch.columns, data_columns,
        )

    _append_delta(matrix_path, _render(new_records, key_index))
    total = len(existing) + len(new_records)
    logger.info("Appended %d row(s) to %s (%d total)", len(new_records), matrix_path, total)
    return UpdateResult(appended=len(new_records), total_rows=total)


def _write_new(path: str, content: str) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory
        )
    except OSError as exc:
        raise PersistenceError(f"Cannot create matrix {path}: {exc}") from exc
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_path, MATRIX_FILE_MODE)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise PersistenceError(f"Cannot write matrix {path}: {exc}") from exc
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def _write_delta(delta_path: str, delta: str) -> None:
    with open(delta_path, "w", encoding="utf-8", newline="") as fh:
        fh.write(delta)
        fh.flush()
        os.fsync(fh.fileno())
    with open(delta_path, encoding="utf-8", newline="") as fh:
        if fh.read() != delta:
            raise PersistenceError(f"Delta file {delta_path} does not match the rows to append")


def _ends_with_newline(path: str) -> bool:
    with open(path, "rb") as fh:
        fh.seek(-1, os.SEEK_END)
        return fh.read(1) == b"\n"


def _append_delta(path: str, delta: str) -> None:
    delta_path = f"{path}.delta"
    try:
        try:
            _write_delta(delta_path, delta)
            original_size = os.path.getsize(path)
            data = delta.encode("utf-8")
            if not _ends_with_newline(path):
                data = b"\n" + data
        except OSError as exc:
            raise PersistenceError(f"Cannot stage new rows for {path}: {exc}") from exc

        try:
            with open(path, "ab") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
        except BaseException as exc:
            _rollback(path, original_size)
            if isinstance(exc, OSError):
                raise PersistenceError(f"Cannot append to matrix {path}: {exc}") from exc
            raise
    finally:
        if os.path.exists(delta_path):
            os.remove(delta_path)


def _rollback(path: str, size: int) -> None:
    try:
        with open(path, "r+b") as fh:
            fh.truncate(size)
    except OSError:
        logger.error("Could not restore %s to %d bytes after a failed append", path, size)
        raise
