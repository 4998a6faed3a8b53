"""
Pipeline configuration for limmapy.

A single dataclass holds every tunable of a differential expression run.
Configurations are usually built from keyword arguments or read from a JSON
file with load_config().
"""

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

from .annotation import EXCLUDED_GENE_CLASSES
from .errors import ConfigurationError
from .normalization import NORM_METHODS
from .results import _ADJUST_METHODS


@dataclass
class PipelineConfig:
    """Settings for run_pipeline()."""

    factors: List[str] = field(default_factory=lambda: ['group'])
    group_sep: str = "_"
    min_cpm: float = 0.5
    min_samples: int = 2
    exclude_classes: Tuple[str, ...] = EXCLUDED_GENE_CLASSES
    norm_method: str = "TMM"
    use_voom: bool = True
    trend: bool = False
    p_value: float = 0.05
    adjust_method: str = "BH"
    lfc: float = 1.0
    select_contrasts: Optional[List[str]] = None  # None selects over all contrasts
    n_jobs: int = 1

    def __post_init__(self):
        if isinstance(self.factors, str):
            self.factors = [f.strip() for f in self.factors.split(',') if f.strip()]
        self.factors = list(self.factors)
        self.exclude_classes = tuple(self.exclude_classes or ())
        self.validate()

    def validate(self):
        """Raise ConfigurationError for out-of-range settings."""
        if not self.factors:
            raise ConfigurationError("factors must name at least one sample column")
        if self.min_cpm < 0:
            raise ConfigurationError("min_cpm must be non-negative")
        if int(self.min_samples) != self.min_samples or self.min_samples < 1:
            raise ConfigurationError("min_samples must be a positive integer")
        if self.norm_method not in NORM_METHODS:
            raise ConfigurationError(
                f"norm_method must be one of {', '.join(NORM_METHODS)}, got '{self.norm_method}'")
        if self.adjust_method != 'none' and self.adjust_method not in _ADJUST_METHODS:
            raise ConfigurationError(f"Unknown adjust_method '{self.adjust_method}'")
        if not 0 < self.p_value <= 1:
            raise ConfigurationError("p_value must be in (0, 1]")
        if self.lfc < 0:
            raise ConfigurationError("lfc must be non-negative")
        if int(self.n_jobs) != self.n_jobs or self.n_jobs < 1:
            raise ConfigurationError("n_jobs must be a positive integer")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration key(s): {', '.join(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out['exclude_classes'] = list(self.exclude_classes)
        return out

    def replace(self, **changes) -> "PipelineConfig":
        """Copy with some settings changed; None values are ignored."""
        data = self.to_dict()
        data.update({k: v for k, v in changes.items() if v is not None})
        return PipelineConfig.from_dict(data)


def load_config(path) -> PipelineConfig:
    """Read a PipelineConfig from a JSON object file."""
    try:
        with open(path) as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")
    return PipelineConfig.from_dict(data)
