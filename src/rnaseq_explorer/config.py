"""Configuration management for the RNA-seq explorer."""

from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings
import yaml


class FilterDefaults(BaseModel):
    """Default filtering and normalization parameters."""

    cpm_threshold: float = Field(default=0.5, gt=0.0)
    min_samples: Optional[int] = Field(default=None, ge=1)  # None means smallest group size
    prior_count: float = Field(default=0.5, gt=0.0)


class InputConfig(BaseModel):
    """How the count table and sample table are read and matched."""

    sample_column: str = "SampleName"
    factor_columns: List[str] = ["CellType", "Status"]
    factor_levels: Dict[str, List[str]] = Field(default_factory=dict)
    sample_id_width: Optional[int] = Field(default=7, ge=1)
    annotation_columns: int = Field(default=1, ge=0)
    delimiter: Optional[str] = None


class PlotConfig(BaseModel):
    """Diagnostic plot settings."""

    n_variable_genes: int = Field(default=500, ge=2)
    mds_top: int = Field(default=500, ge=2)
    md_sample: Union[int, str] = 0
    cpm_plot_sample: Union[int, str] = 0
    image_width: int = Field(default=900, ge=100)
    image_height: int = Field(default=600, ge=100)
    image_scale: float = Field(default=1.0, gt=0.0)


class PathConfig(BaseModel):
    """Path configurations."""

    output_dir: Path = Path("plots")


class Config(BaseSettings):
    """Main configuration class."""

    defaults: FilterDefaults = Field(default_factory=FilterDefaults)
    inputs: InputConfig = Field(default_factory=InputConfig)
    plots: PlotConfig = Field(default_factory=PlotConfig)
    paths: PathConfig = Field(default_factory=PathConfig)

    # App settings
    debug: bool = False
    log_level: str = "INFO"

    class Config:
        env_prefix = "RNAEXP_"
        env_nested_delimiter = "__"

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path):
        """Save configuration to YAML file."""
        data = self.model_dump()
        # Convert Path objects to strings
        def convert_paths(obj):
            if isinstance(obj, dict):
                return {k: convert_paths(v) for k, v in obj.items()}
            elif isinstance(obj, list):
                return [convert_paths(item) for item in obj]
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        data = convert_paths(data)

        with open(path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        # Try the working directory first
        default_config_path = Path.cwd() / "rnaseq_explorer.yaml"
        if default_config_path.exists():
            _config = Config.from_yaml(default_config_path)
        else:
            _config = Config()
    return _config


def set_config(config: Optional[Config]):
    """Set the global configuration instance."""
    global _config
    _config = config


# Example rnaseq_explorer.yaml template
CONFIG_TEMPLATE = """
# RNA-seq Explorer Configuration

defaults:
  cpm_threshold: 0.5         # Minimum CPM for a gene to count as expressed in a sample
  min_samples: null          # Samples that must pass; null = smallest group size
  prior_count: 0.5           # Added to counts before taking log2

inputs:
  sample_column: SampleName
  factor_columns:
    - CellType
    - Status
  factor_levels: {}          # e.g. {Status: [virgin, pregnant, lactating]}
  sample_id_width: 7         # Truncate count table sample names; null = keep as is
  annotation_columns: 1      # Gene annotation columns after the gene id (e.g. Length)

plots:
  n_variable_genes: 500
  mds_top: 500
  md_sample: 0
  cpm_plot_sample: 0
  image_width: 900
  image_height: 600
  image_scale: 1.0

paths:
  output_dir: plots

debug: false
log_level: INFO
"""
