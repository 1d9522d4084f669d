"""
Run configuration and directory setup

A run is controlled by a JSON file holding the switches below; every stage
receives the same frozen RunConfig.
"""

import os
import json
import shutil
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Optional, Tuple


logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_URL = "https://web.archive.org/web/20130801000000/http://www.mothur.org/wiki/454_SOP"

DEFAULT_METADATA_FIELDS = (
    ("fev1", "host_fev1"),
    ("age", "host_age"),
    ("aggressiveness", "host_disease_aggressiveness"),
)

PATH_OPTIONS = ("data_dir", "input_dir", "output_dir", "figures_dir", "download_dir")

DEFAULT_PATHS = {
    "data_dir": "data",
    "input_dir": "data/input",
    "output_dir": "data/output",
    "figures_dir": "figures",
    "download_dir": "data/external",
}

# Names accepted in config files that map onto another field
ALIASES = {
    "run_clustering": "run_mothur",
}


class ConfigError(ValueError):
    """Raised when a run configuration is invalid."""


@dataclass(frozen=True)
class RunConfig:
    """Switches and paths for one reproduction run"""

    data_dir: Path
    input_dir: Path
    output_dir: Path
    figures_dir: Path
    download_dir: Path
    project_id: str = ""
    email: str = "your_email@example.com"
    get_new_data: bool = False
    download_fastq_files: bool = False
    make_mothur_input: bool = False
    make_fasta_files: bool = False
    run_mothur: bool = False
    remove_old_output: bool = False
    make_new_datasets: bool = False
    num_processors: int = 1
    merge_fan_out: int = 10
    reference_db: str = "silva.bacteria.pcr.fasta"
    template_url: str = DEFAULT_TEMPLATE_URL
    strict_template: bool = False
    metadata_fields: Tuple[Tuple[str, str], ...] = field(default=DEFAULT_METADATA_FIELDS)

    def __post_init__(self):
        if not _is_int(self.num_processors) or self.num_processors < 1:
            raise ConfigError(f"num_processors must be a positive integer, got {self.num_processors!r}")
        if not _is_int(self.merge_fan_out) or self.merge_fan_out < 2:
            raise ConfigError(f"merge_fan_out must be an integer >= 2, got {self.merge_fan_out!r}")
        if self.get_new_data and not self.project_id:
            raise ConfigError("project_id is required when get_new_data is enabled")

    @classmethod
    def from_dict(cls, options, base_dir=None):
        """
        Build a config from a plain mapping of option names

        Args:
            options: Mapping of option name to value (e.g. parsed JSON)
            base_dir: Directory that relative paths resolve against
                      (defaults to the current working directory)

        Returns:
            RunConfig
        """
        base = Path(base_dir) if base_dir is not None else Path.cwd()
        known = {f.name for f in fields(cls)}

        values = {}
        for key, value in options.items():
            key = ALIASES.get(key, key)
            if key not in known:
                raise ConfigError(f"Unknown configuration option: {key}")
            if key in values:
                raise ConfigError(f"Option {key} given more than once (directly and by alias)")
            values[key] = value

        for name in PATH_OPTIONS:
            path = Path(values.get(name, DEFAULT_PATHS[name]))
            if not path.is_absolute():
                path = base / path
            values[name] = path

        if "metadata_fields" in values:
            values["metadata_fields"] = _normalise_fields(values["metadata_fields"])

        return cls(**values)

    def with_overrides(self, **changes):
        """Return a copy with some options replaced"""
        for key in list(changes):
            if key in ALIASES:
                if ALIASES[key] in changes:
                    raise ConfigError(f"Option {ALIASES[key]} given more than once (directly and by alias)")
                changes[ALIASES[key]] = changes.pop(key)
        return replace(self, **changes)

    # Derived file locations

    @property
    def accession_file(self) -> Path:
        return self.data_dir / f"{self.project_id}_accessions.txt"

    @property
    def sample_file(self) -> Path:
        return self.data_dir / f"{self.project_id}_samples.txt"

    @property
    def full_dataset_file(self) -> Path:
        return self.data_dir / f"{self.project_id}_full_dataset.csv"

    @property
    def metadata_xml_file(self) -> Path:
        return self.data_dir / f"{self.project_id}_metadata.xml"

    @property
    def metadata_table_file(self) -> Path:
        return self.data_dir / "metadata_table.tsv"

    @property
    def batch_file(self) -> Path:
        return self.output_dir / "batch.mothur"

    @property
    def mothur_log(self) -> Path:
        return self.output_dir / "mothur_run.log"

    def field_file(self, stem) -> Path:
        return self.data_dir / f"{stem}.txt"

    @property
    def directories(self):
        return [getattr(self, name) for name in PATH_OPTIONS]


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _normalise_fields(value) -> Tuple[Tuple[str, str], ...]:
    if isinstance(value, dict):
        items = value.items()
    else:
        items = value
    try:
        return tuple((str(stem), str(tag)) for stem, tag in items)
    except (TypeError, ValueError):
        raise ConfigError(f"metadata_fields must map file stems to XML tags, got {value!r}")


def load_config(path, base_dir=None, overrides: Optional[Dict] = None) -> RunConfig:
    """Read a JSON configuration file into a RunConfig"""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            options = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Could not parse {path}: {e}")

    if not isinstance(options, dict):
        raise ConfigError(f"{path} must contain a JSON object")

    if overrides:
        options.update(overrides)

    if base_dir is None:
        base_dir = path.parent
    return RunConfig.from_dict(options, base_dir=base_dir)


def init_directories(config: RunConfig):
    """Create every configured directory; existing ones are left alone"""
    for directory in config.directories:
        os.makedirs(directory, exist_ok=True)
        logger.debug("Directory ready: %s", directory)


def remove_old_output(config: RunConfig):
    """Wipe the mothur output directory and recreate it empty"""
    if config.output_dir.exists():
        logger.info("Removing old output in %s", config.output_dir)
        shutil.rmtree(config.output_dir)
    os.makedirs(config.output_dir, exist_ok=True)
