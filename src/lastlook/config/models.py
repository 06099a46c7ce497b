"""Configuration models describing LastLook settings."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

HashAlgorithm = Literal["xxh3_64", "md5", "sha256"]
ResolutionName = Literal["overwrite_smart", "force_overwrite", "skip_existing", "cancel"]


class LastLookBaseModel(BaseModel):
    """Shared configuration for LastLook Pydantic settings models."""

    model_config = ConfigDict(extra="forbid")


class TransferSettings(LastLookBaseModel):
    """Options governing how a transfer batch is executed.

    Attributes:
        hash_algorithm: Content fingerprint recorded for each verified file.
        chunk_size_kb: Read/write buffer size used by the local copier.
        smart_resume_tolerance_ms: Maximum modification-time drift for two
            files of equal size to be considered identical.
        default_resolution: Conflict resolution applied without prompting.
        include_hidden: Whether dot-files on the source are offered for transfer.
    """

    hash_algorithm: HashAlgorithm = "xxh3_64"
    chunk_size_kb: int = Field(default=1024, gt=0)
    smart_resume_tolerance_ms: int = Field(default=3000, ge=0)
    default_resolution: Optional[ResolutionName] = None
    include_hidden: bool = False


class ManifestSettings(LastLookBaseModel):
    """Manifest journal options.

    Attributes:
        filename: Name of the journal file written inside each destination.
    """

    filename: str = "lastlook_manifest.json"


class LoggingSettings(LastLookBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    max_size_mb: int = 10
    backup_count: int = 3


class CLIOptions(LastLookBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        summary_default: Whether commands only print summary lines by default.
    """

    quiet_default: bool = False
    summary_default: bool = False


class LastLookConfig(LastLookBaseModel):
    """Top-level configuration struct for LastLook.

    Attributes:
        transfer: Transfer engine settings.
        manifest: Manifest journal settings.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    transfer: TransferSettings = Field(default_factory=TransferSettings)
    manifest: ManifestSettings = Field(default_factory=ManifestSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "HashAlgorithm",
    "ResolutionName",
    "LastLookBaseModel",
    "TransferSettings",
    "ManifestSettings",
    "LoggingSettings",
    "CLIOptions",
    "LastLookConfig",
]
