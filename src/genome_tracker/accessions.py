"""Accession list parsing and cross-referencing."""

from typing import Iterable, List


def parse_accessions(lines: Iterable[str]) -> List[str]:
    """Trim each newline-delimited token and drop blank lines."""
    accessions = []
    for line in lines:
        stripped = line.strip()
        if stripped:
            accessions.append(stripped)
    return accessions


def intersect_accessions(first: Iterable[str], second: Iterable[str]) -> List[str]:
    """Return accessions present in both inputs, deduplicated and sorted.

    Output order is the sorted order of the intersection, never the input
    order, so two runs over the same upstream state produce the same list.
    """
    wanted = {acc.strip() for acc in second}
    common = {acc.strip() for acc in first if acc.strip() in wanted}
    common.discard("")
    return sorted(common)
