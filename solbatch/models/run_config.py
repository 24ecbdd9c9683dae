"""
Run Configuration Models

Defines Pydantic models for the two configuration files passed on the
command line:
- AppConfig (--appCfg): database connection, concurrency, input/log paths
- ExtractionConfig (--runCfg): procedures, templates, spool output, split rules

Keys are camelCase in the files; snake_case field names are accepted too.
"""

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class AppConfig(_CamelModel):
    """
    Application configuration.

    ``concurrency`` is both the worker ceiling and the connection pool size,
    so workers can never starve for connections.
    """

    db_user: str = Field(..., description="Database user")
    db_password: str = Field("", description="Database password")
    db_host: str = Field(..., description="Database host")
    db_port: int = Field(5432, ge=1, le=65535, description="Database port")
    db_name: str = Field(
        ...,
        validation_alias=AliasChoices("dbName", "dbSid", "db_name", "db_sid"),
        description="Database (service) name",
    )

    concurrency: int = Field(..., ge=1, description="Max workers / max connections")
    sol_file_path: Path = Field(..., description="SOL list, one identifier per line")
    log_file_path: Path = Field(..., description="Directory for outcome logs")

    # Pool tuning
    min_workers: int = Field(2, ge=1, description="Worker floor")
    high_watermark: int = Field(20, ge=0, description="Scale up above this queue depth")
    low_watermark: int = Field(5, ge=0, description="Scale down below this queue depth")
    scale_interval_seconds: float = Field(
        1.0, gt=0, description="Pool manager sampling period"
    )
    conn_max_lifetime_seconds: float = Field(
        1800.0, gt=0, description="Idle connection lifetime cap"
    )
    outcome_buffer_size: int = Field(1000, ge=1, description="Outcome channel capacity")
    connect_retries: int = Field(3, ge=1, description="Pool creation attempts")

    @model_validator(mode="after")
    def validate_pool_bounds(self):
        """Clamp the worker floor to the ceiling and order the watermarks."""
        if self.min_workers > self.concurrency:
            self.min_workers = self.concurrency
        if self.low_watermark > self.high_watermark:
            raise ValueError(
                f"lowWatermark ({self.low_watermark}) must not exceed "
                f"highWatermark ({self.high_watermark})"
            )
        return self

    @property
    def max_workers(self) -> int:
        return self.concurrency


class MergeOptions(_CamelModel):
    """Options for the post-extract spool merge."""

    enabled: bool = Field(True, description="Merge spool files after extraction")
    output_path: Optional[Path] = Field(
        None, description="Merged file directory (defaults to spoolOutputPath)"
    )
    extension: str = Field(".csv", description="Merged file extension")
    remove_spools: bool = Field(False, description="Delete spool files once merged")

    @field_validator("extension")
    @classmethod
    def normalize_extension(cls, v: str) -> str:
        v = v.strip()
        if v and not v.startswith("."):
            v = "." + v
        return v


class ExtractionConfig(_CamelModel):
    """Extraction / insert run configuration."""

    procedures: List[str] = Field(default_factory=list, description="Procedure names")
    package_name: str = Field(..., min_length=1, description="Package / log namespace")
    template_path: Path = Field(Path("."), description="Template directory")
    spool_output_path: Path = Field(Path("."), description="Spool file directory")
    split_rules: Dict[str, List[str]] = Field(
        default_factory=dict, description="Procedure -> columns to group rows by"
    )
    merge: MergeOptions = Field(default_factory=MergeOptions)
    fetch_batch_size: int = Field(500, ge=1, description="Rows per cursor fetch")

    @field_validator("procedures")
    @classmethod
    def validate_procedures(cls, v: List[str]) -> List[str]:
        cleaned = [str(p).strip() for p in v]
        if any(not p for p in cleaned):
            raise ValueError("procedure names must not be blank")
        seen: set[str] = set()
        dupes: set[str] = set()
        for p in cleaned:
            if p in seen:
                dupes.add(p)
            seen.add(p)
        if dupes:
            raise ValueError(f"duplicate procedures: {sorted(dupes)}")
        return cleaned

    @model_validator(mode="after")
    def validate_split_rules(self):
        """Split rules must name known procedures and at least one column."""
        unknown = sorted(set(self.split_rules) - set(self.procedures))
        if unknown:
            raise ValueError(f"splitRules reference unknown procedures: {unknown}")
        for proc, cols in self.split_rules.items():
            if not cols:
                raise ValueError(f"splitRules[{proc}] must list at least one column")
        return self

    @property
    def merge_output_path(self) -> Path:
        return self.merge.output_path or self.spool_output_path
