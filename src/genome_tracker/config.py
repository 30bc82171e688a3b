"""Run configuration, built from environment variables and CLI flags."""

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from genome_tracker.errors import ConfigError
from genome_tracker.models import DEFAULT_FIELDS, DEFAULT_KEY_FIELD_INDEX, DEFAULT_URL_COLUMN

EUKARYOTE_TAXON_ID = "2759"

# Variable names used by the scheduled workflow's .env file
ENV_PROJECT_ACCESSION = "PROJECT_ACCESSION"
ENV_TAXON_ID = "ROOT_TAXON"
ENV_FIELDS = "TSV_FIELDS"
ENV_MATRIX_PATH = "MATRIX_PATH"
ENV_KEY_FIELD_INDEX = "KEY_FIELD_INDEX"
ENV_URL_COLUMN = "COLUMN_NAME"
ENV_API_KEY = "NCBI_API_KEY"


def split_fields(value: str) -> List[str]:
    return [f.strip() for f in value.split(",") if f.strip()]


@dataclass(frozen=True)
class TrackerConfig:
    project_accession: str
    matrix_path: str
    taxon_id: str = EUKARYOTE_TAXON_ID
    fields: List[str] = field(default_factory=lambda: list(DEFAULT_FIELDS))
    key_field_index: int = DEFAULT_KEY_FIELD_INDEX
    url_column: str = DEFAULT_URL_COLUMN
    api_key: Optional[str] = None
    tools_dir: str = "."
    allow_tool_download: bool = True
    intermediates_dir: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, **overrides) -> "TrackerConfig":
        """Build a config from environment variables; keyword overrides win."""
        env = os.environ if env is None else env
        values = {
            "project_accession": env.get(ENV_PROJECT_ACCESSION, ""),
            "matrix_path": env.get(ENV_MATRIX_PATH, ""),
            "taxon_id": env.get(ENV_TAXON_ID) or EUKARYOTE_TAXON_ID,
            "url_column": env.get(ENV_URL_COLUMN) or DEFAULT_URL_COLUMN,
            "api_key": env.get(ENV_API_KEY) or None,
        }
        if env.get(ENV_FIELDS):
            values["fields"] = split_fields(env[ENV_FIELDS])
        if env.get(ENV_KEY_FIELD_INDEX):
            try:
                values["key_field_index"] = int(env[ENV_KEY_FIELD_INDEX])
            except ValueError:
                raise ConfigError(
                    f"{ENV_KEY_FIELD_INDEX} must be an integer, got {env[ENV_KEY_FIELD_INDEX]!r}"
                ) from None
        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        if not self.project_accession:
            raise ConfigError(f"No project accession configured (set {ENV_PROJECT_ACCESSION} or --project)")
        if not self.matrix_path:
            raise ConfigError(f"No matrix path configured (set {ENV_MATRIX_PATH} or --matrix)")
        if not self.taxon_id:
            raise ConfigError("No root taxon configured")
        if not self.fields:
            raise ConfigError("Field list is empty")
        if not 0 <= self.key_field_index < len(self.fields):
            raise ConfigError(
                f"Key field index {self.key_field_index} is outside the field list "
                f"({len(self.fields)} fields: {','.join(self.fields)})"
            )
        if not self.url_column or "\t" in self.url_column:
            raise ConfigError(f"Invalid download URL column name: {self.url_column!r}")
