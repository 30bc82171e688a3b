"""Command-line interface for genome-tracker."""

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from genome_tracker.config import TrackerConfig, split_fields
from genome_tracker.core import GenomeTracker
from genome_tracker.errors import TrackerError
from genome_tracker.models import RunSummary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="genome-tracker",
        description=(
            "Cross-reference a BioProject against a root taxon in NCBI Datasets "
            "and append newly found assemblies to a TSV tracking matrix."
        ),
    )
    parser.add_argument(
        "--project", type=str, default=None,
        help="Project accession to track, e.g. PRJNA533106 (env: PROJECT_ACCESSION)",
    )
    parser.add_argument(
        "--taxon", type=str, default=None,
        help="Root taxon ID (env: ROOT_TAXON, default: 2759)",
    )
    parser.add_argument(
        "--fields", type=str, default=None,
        help="Comma-separated dataformat fields (env: TSV_FIELDS, "
             "default: organism-name,organism-tax-id,accession)",
    )
    parser.add_argument(
        "--matrix", type=str, default=None,
        help="Path of the tracking matrix TSV (env: MATRIX_PATH)",
    )
    parser.add_argument(
        "--key-index", type=int, default=None,
        help="0-based position of the assembly accession in --fields (env: KEY_FIELD_INDEX, default: 2)",
    )
    parser.add_argument(
        "--column-name", type=str, default=None,
        help="Header of the download URL column (env: COLUMN_NAME, default: download_url)",
    )
    parser.add_argument(
        "--ncbi-api-key", type=str, default=None,
        help="NCBI API key passed to datasets (env: NCBI_API_KEY)",
    )
    parser.add_argument(
        "--tools-dir", type=str, default=".",
        help="Where to look for / download datasets and dataformat (default: .)",
    )
    parser.add_argument(
        "--no-download", action="store_true",
        help="Fail instead of downloading missing NCBI tools",
    )
    parser.add_argument(
        "--keep-intermediates", type=str, default=None, metavar="DIR",
        help="Write accession lists and filtered metadata to DIR for inspection",
    )
    parser.add_argument(
        "--env-file", type=str, default=".env",
        help="Dotenv file with configuration variables (default: .env)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable verbose/debug logging",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> TrackerConfig:
    return TrackerConfig.from_env(
        project_accession=args.project,
        taxon_id=args.taxon,
        fields=split_fields(args.fields) if args.fields else None,
        matrix_path=args.matrix,
        key_field_index=args.key_index,
        url_column=args.column_name,
        api_key=args.ncbi_api_key,
        tools_dir=args.tools_dir,
        allow_tool_download=not args.no_download,
        intermediates_dir=args.keep_intermediates,
    )


def print_summary(summary: RunSummary, matrix_path: str) -> None:
    print(f"Taxon accessions:     {summary.taxon_accessions}")
    print(f"Project accessions:   {summary.project_accessions}")
    print(f"Cross-referenced:     {summary.intersected}")
    print(f"Unique assemblies:    {summary.unique_rows} (of {summary.metadata_rows} metadata rows)")
    if summary.bootstrapped:
        print(f"Created new matrix file: {matrix_path}")
    if summary.appended:
        print(f"Added {summary.appended} new row(s) to {matrix_path}")
    else:
        print(f"No new assemblies found; added 0 new rows to {matrix_path}")
    print(f"Total rows: {summary.matrix_rows}")


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    load_dotenv(args.env_file)

    try:
        config = config_from_args(args)
        summary = GenomeTracker(config).run()
    except TrackerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    print_summary(summary, config.matrix_path)


if __name__ == "__main__":
    main()
