"""
Configuration for time-course gene set analysis.

A TcGSAConfig collects every knob of a batch analysis (design variable
names, random-effect structure, time trend form, gene set size bounds and
parallel execution settings). It is validated once, at construction, so a
contradictory request fails before any gene set is touched.

Configurations can also be read from YAML or JSON files:

    >>> from pathlib import Path
    >>> from tcgsa.config import TcGSAConfig, load_config
    >>> config = TcGSAConfig.from_dict(load_config(Path("tcgsa.yaml")))
    >>> config.time_func
    'cubic'
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, Tuple, Union

import pandas as pd
import yaml

__all__ = [
    "ConfigurationError",
    "ParallelBackend",
    "TcGSAConfig",
    "load_config",
    "RESERVED_COLUMNS",
]

# Columns created by the long-format reshaping step.
RESERVED_COLUMNS = ("probe", "expression")

MonitorSink = Union[str, os.PathLike, TextIO, None]


class ConfigurationError(ValueError):
    """Raised when an analysis is configured inconsistently."""


class ParallelBackend(Enum):
    """Execution backend used to dispatch one task per gene set."""

    SEQUENTIAL = "sequential"
    THREADS = "threads"
    PROCESSES = "processes"
    JOBLIB = "joblib"

    @classmethod
    def parse(cls, value: Union[str, "ParallelBackend"]) -> "ParallelBackend":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            options = ", ".join(b.value for b in cls)
            raise ConfigurationError(
                f"Unknown parallel backend {value!r}. Use one of: {options}"
            ) from None


def _as_names(value: Union[str, Sequence[str], None]) -> Tuple[str, ...]:
    """Normalize a covariate argument to a tuple of non-empty names."""
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    return tuple(str(v) for v in value if str(v) != "")


@dataclass(frozen=True)
class TcGSAConfig:
    """
    Settings of one TcGSA batch analysis.

    Attributes:
        subject_name: Design column holding the subject (repetition unit) ids.
        time_name: Design column holding the time of each sample.
        crossed_random: If True, subject and gene random intercepts are
            modelled as one random effect keyed by (subject, gene). If False,
            as two independent random intercepts.
        covariates_fixed: Design columns entering the models as fixed effects.
        time_covariates: Design columns interacting with the time trend.
        time_func: "linear", "cubic", "splines", the name of a design column
            (discrete time) or an expression over design columns using
            ``+``, ``*`` and ``/``.
        group_name: Design column splitting samples into treatment groups.
            When set, the test targets a group-dependent time trend.
        separate_subjects: Test for subject-heterogeneous trends instead of
            gene-heterogeneous ones. Incompatible with ``group_name``.
        min_gs_size: Smallest gene set (after intersection with the
            expression matrix) that is analyzed. Inclusive.
        max_gs_size: Largest gene set that is analyzed. Inclusive.
        n_workers: Size of the worker pool.
        backend: Parallel backend used to dispatch the gene sets.
        monitor_file: Path or writable text stream receiving one progress
            line per analyzed gene set. None disables monitoring.
    """

    subject_name: str = "Patient_ID"
    time_name: str = "TimePoint"
    crossed_random: bool = False
    covariates_fixed: Tuple[str, ...] = ()
    time_covariates: Tuple[str, ...] = ()
    time_func: str = "linear"
    group_name: Optional[str] = None
    separate_subjects: bool = False
    min_gs_size: int = 10
    max_gs_size: int = 500
    n_workers: int = 1
    backend: ParallelBackend = ParallelBackend.THREADS
    monitor_file: MonitorSink = field(default=None, compare=False)

    def __post_init__(self) -> None:
        # frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "covariates_fixed", _as_names(self.covariates_fixed))
        object.__setattr__(self, "time_covariates", _as_names(self.time_covariates))
        object.__setattr__(self, "group_name", self.group_name or None)
        object.__setattr__(self, "backend", ParallelBackend.parse(self.backend))
        if self.monitor_file == "":
            object.__setattr__(self, "monitor_file", None)

        if self.group_name is not None and self.separate_subjects:
            raise ConfigurationError(
                f"'separate_subjects' is True while 'group_name' is {self.group_name!r}. "
                "Separating subjects in a multiple group setting is not supported."
            )
        if not self.time_func or not str(self.time_func).strip():
            raise ConfigurationError("time_func must be a non-empty string")
        if self.min_gs_size < 1:
            raise ConfigurationError(f"min_gs_size must be >= 1, got {self.min_gs_size}")
        if self.max_gs_size < self.min_gs_size:
            raise ConfigurationError(
                f"max_gs_size ({self.max_gs_size}) must be >= min_gs_size ({self.min_gs_size})"
            )
        if self.n_workers < 1:
            raise ConfigurationError(f"n_workers must be >= 1, got {self.n_workers}")

    @property
    def design_columns(self) -> Tuple[str, ...]:
        """Design columns this configuration refers to, in declaration order."""
        names = [self.subject_name, self.time_name, *self.covariates_fixed, *self.time_covariates]
        if self.group_name is not None:
            names.append(self.group_name)
        return tuple(dict.fromkeys(names))

    def validate_design(self, design: pd.DataFrame) -> None:
        """
        Check that the design table carries every column the models need.

        Raises:
            ConfigurationError: If a configured column is missing, or the
                design uses a column name reserved for the long format.
        """
        missing = [c for c in self.design_columns if c not in design.columns]
        if missing:
            raise ConfigurationError(
                f"Design table is missing configured column(s): {missing}. "
                f"Available: {list(design.columns)}"
            )
        reserved = [c for c in RESERVED_COLUMNS if c in design.columns]
        if reserved:
            raise ConfigurationError(
                f"Design table uses reserved column name(s) {reserved}"
            )

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> "TcGSAConfig":
        """
        Build a configuration from a plain mapping (e.g. a loaded YAML file).

        Raises:
            ConfigurationError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(config) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration key(s): {unknown}")
        return cls(**dict(config))

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the configuration (monitor sink excluded)."""
        return {
            "subject_name": self.subject_name,
            "time_name": self.time_name,
            "crossed_random": self.crossed_random,
            "covariates_fixed": list(self.covariates_fixed),
            "time_covariates": list(self.time_covariates),
            "time_func": self.time_func,
            "group_name": self.group_name,
            "separate_subjects": self.separate_subjects,
            "min_gs_size": self.min_gs_size,
            "max_gs_size": self.max_gs_size,
            "n_workers": self.n_workers,
            "backend": self.backend.value,
        }


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Read analysis settings from a ``.yaml``, ``.yml`` or ``.json`` file.

    An empty file gives an empty mapping; pass the result to
    ``TcGSAConfig.from_dict``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On an unknown suffix, a parse error, or a top level
            that is not a mapping.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix not in ('.yaml', '.yml', '.json'):
        raise ValueError(f"Unsupported config format {suffix!r}, expected .yaml, .yml or .json")

    text = config_path.read_text()
    try:
        settings = json.loads(text) if suffix == '.json' else yaml.safe_load(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Cannot parse {config_path.name}: {e}") from e

    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ValueError(f"{config_path.name} must hold a mapping of settings at top level")
    return settings
