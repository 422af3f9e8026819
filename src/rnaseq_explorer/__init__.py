"""RNA-seq Explorer - filtering, normalization and diagnostic plots for count data."""

__version__ = "0.1.0"

from .config import get_config, Config
from .validation import (
    ExplorerError,
    InputFormatError,
    DimensionMismatch,
    DegenerateInput,
    UnknownSample,
    read_count_table,
    read_sample_table,
    check_sample_alignment
)
from .normalization import (
    CountMatrix,
    FilteredCountMatrix,
    LogCpmMatrix,
    compute_cpm,
    filter_by_expression,
    calc_norm_factors,
    log_cpm,
    run_pipeline
)
from .metadata import SampleFactor, SampleMetadata

__all__ = [
    'get_config',
    'Config',
    'ExplorerError',
    'InputFormatError',
    'DimensionMismatch',
    'DegenerateInput',
    'UnknownSample',
    'read_count_table',
    'read_sample_table',
    'check_sample_alignment',
    'CountMatrix',
    'FilteredCountMatrix',
    'LogCpmMatrix',
    'compute_cpm',
    'filter_by_expression',
    'calc_norm_factors',
    'log_cpm',
    'run_pipeline',
    'SampleFactor',
    'SampleMetadata'
]
