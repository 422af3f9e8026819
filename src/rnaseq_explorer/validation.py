"""Reading and validation of count tables and sample tables."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


class ExplorerError(Exception):
    """Base class for all errors raised by the explorer."""
    pass


class InputFormatError(ExplorerError):
    """Malformed or missing input file."""
    pass


class DimensionMismatch(ExplorerError):
    """Samples or library sizes do not line up with the count matrix columns."""
    pass


class DegenerateInput(ExplorerError):
    """Input that would produce an empty or NaN-filled result."""
    pass


class UnknownSample(ExplorerError, KeyError):
    """A configured sample name or position that is not in the data."""
    pass


class ValidationWarning(BaseModel):
    """Warning message from validation."""
    message: str
    severity: str = Field(default="warning")  # warning, info


class ValidationResult(BaseModel):
    """Result of data validation."""
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)


def _detect_delimiter(filepath: Path) -> str:
    with open(filepath, 'r') as f:
        first_line = f.readline()
    if '\t' in first_line:
        return '\t'
    elif ',' in first_line:
        return ','
    return '\t'  # single column


def _read_table(filepath: Path, delimiter: Optional[str]) -> pd.DataFrame:
    if not filepath.exists():
        raise InputFormatError(f"Input file not found: {filepath}")

    try:
        if filepath.suffix.lower() in ['.xlsx', '.xls']:
            df = pd.read_excel(filepath, header=0)
        else:
            if delimiter is None:
                delimiter = _detect_delimiter(filepath)
            df = pd.read_csv(filepath, sep=delimiter, header=0)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError, ValueError) as e:
        raise InputFormatError(f"Could not parse {filepath}: {e}") from e

    if df.empty:
        raise InputFormatError(f"{filepath} contains no data rows")

    df.columns = df.columns.astype(str).str.strip()
    return df


def read_count_table(
    filepath: Union[str, Path],
    delimiter: Optional[str] = None,
    annotation_columns: int = 1
):
    """
    Read a count table into a CountMatrix.

    The first column holds gene identifiers, the next ``annotation_columns``
    columns hold per-gene annotation (e.g. Length) and every remaining column
    is one sample.

    Args:
        filepath: Path to count table
        delimiter: Column delimiter (auto-detected if None)
        annotation_columns: Number of annotation columns after the gene id

    Returns:
        CountMatrix with genes as rows, samples as columns

    Raises:
        InputFormatError: if the file is missing or the counts are not
            non-negative integers with unique gene identifiers
    """
    from .normalization import CountMatrix

    filepath = Path(filepath)
    df = _read_table(filepath, delimiter)

    first_sample = 1 + annotation_columns
    if df.shape[1] <= first_sample:
        raise InputFormatError(
            f"{filepath} has {df.shape[1]} columns; expected a gene id column, "
            f"{annotation_columns} annotation column(s) and at least one sample"
        )

    df = df.set_index(df.columns[0])
    df.index = df.index.astype(str).str.strip()
    annotation = df.iloc[:, :annotation_columns]
    counts = df.iloc[:, annotation_columns:]

    counts = counts.apply(pd.to_numeric, errors='coerce')
    if counts.isna().any().any():
        bad = counts.columns[counts.isna().any()].tolist()
        raise InputFormatError(
            f"Count table has missing or non-numeric values in sample(s): {', '.join(bad)}"
        )
    if (counts < 0).any().any():
        raise InputFormatError("Count table contains negative values")
    if not np.allclose(counts.values, np.round(counts.values)):
        raise InputFormatError("Count table contains non-integer values")
    if counts.index.duplicated().any():
        n_duplicates = counts.index.duplicated().sum()
        raise InputFormatError(f"Count table contains {n_duplicates} duplicate gene IDs")

    logger.info(f"Read count table {filepath.name}: {counts.shape[0]} genes x {counts.shape[1]} samples")
    return CountMatrix(counts=counts.round().astype(np.int64), annotation=annotation)


def read_sample_table(
    filepath: Union[str, Path],
    sample_column: str = "SampleName",
    delimiter: Optional[str] = None
) -> pd.DataFrame:
    """
    Read the sample table.

    Args:
        filepath: Path to sample table
        sample_column: Column holding sample identifiers
        delimiter: Column delimiter (auto-detected if None)

    Returns:
        DataFrame with one row per sample, in file order
    """
    filepath = Path(filepath)
    df = _read_table(filepath, delimiter)

    if sample_column not in df.columns:
        raise InputFormatError(
            f"Sample column '{sample_column}' not found in {filepath.name}; "
            f"available columns: {', '.join(df.columns)}"
        )

    df[sample_column] = df[sample_column].astype(str).str.strip()
    logger.info(f"Read sample table {filepath.name}: {len(df)} samples")
    return df


def normalize_sample_ids(ids: Sequence[str], width: Optional[int] = 7) -> List[str]:
    """Strip sample identifiers and truncate them to ``width`` characters."""
    if width is not None and width < 1:
        raise ValueError(f"width must be positive, got {width}")
    cleaned = [str(i).strip() for i in ids]
    if width is None:
        return cleaned
    return [i[:width] for i in cleaned]


def check_sample_alignment(count_samples: Sequence[str], metadata_samples: Sequence[str]):
    """
    Require the count table columns and metadata samples to match in order.

    Raises:
        DimensionMismatch: on differing length or on the first position
            where the identifiers differ
    """
    count_samples = list(count_samples)
    metadata_samples = list(metadata_samples)

    if len(count_samples) != len(metadata_samples):
        raise DimensionMismatch(
            f"Count table has {len(count_samples)} samples but metadata lists "
            f"{len(metadata_samples)}"
        )

    for position, (c, m) in enumerate(zip(count_samples, metadata_samples)):
        if c != m:
            raise DimensionMismatch(
                f"Sample order differs at position {position}: count table has '{c}', "
                f"metadata has '{m}'"
            )


def validate_count_matrix(counts: pd.DataFrame) -> ValidationResult:
    """
    Report on library sizes and sample names of a count matrix.

    Value checks (negative, missing or non-integer counts, duplicate genes)
    happen when the table is read.

    Args:
        counts: Count matrix DataFrame

    Returns:
        ValidationResult with errors, warnings and a summary
    """
    errors = []
    warnings = []

    n_genes, n_samples = counts.shape

    if n_genes < 5000:
        warnings.append(ValidationWarning(
            message=f"Low number of genes ({n_genes}). Typical RNA-seq has 15,000-25,000 genes.",
            severity="warning"
        ))

    library_sizes = counts.sum(axis=0).to_dict()

    for sample, size in library_sizes.items():
        if 0 < size < 1e6:
            warnings.append(ValidationWarning(
                message=f"Sample '{sample}' has low library size: {size:,.0f} reads",
                severity="warning"
            ))
        elif size > 100e6:
            warnings.append(ValidationWarning(
                message=f"Sample '{sample}' has very high library size: {size:,.0f} reads",
                severity="info"
            ))

    if counts.columns.duplicated().any():
        n_duplicates = counts.columns.duplicated().sum()
        errors.append(f"Count matrix contains {n_duplicates} duplicate sample IDs")

    summary = {
        "n_genes": n_genes,
        "n_samples": n_samples,
        "total_counts": int(counts.sum().sum()),
        "mean_library_size": float(np.mean(list(library_sizes.values()))),
        "median_library_size": float(np.median(list(library_sizes.values())))
    }

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary=summary
    )


def validate_metadata(
    metadata: pd.DataFrame,
    group_column: Optional[str] = None
) -> ValidationResult:
    """
    Validate sample metadata indexed by sample name.

    Args:
        metadata: Metadata DataFrame
        group_column: Column defining experimental groups

    Returns:
        ValidationResult with errors, warnings and a summary
    """
    errors = []
    warnings = []

    if metadata.empty:
        errors.append("Metadata is empty")
        return ValidationResult(valid=False, errors=errors)

    replicates_per_group = None

    if group_column:
        if group_column not in metadata.columns:
            errors.append(f"Group column '{group_column}' not found in metadata")
        else:
            if metadata[group_column].isna().any():
                errors.append(f"Group column '{group_column}' contains missing values")

            replicates_per_group = {
                str(k): int(v) for k, v in metadata[group_column].value_counts().items()
            }

            for group, count in replicates_per_group.items():
                if count < 2:
                    warnings.append(ValidationWarning(
                        message=f"Group '{group}' has only {count} replicate. "
                                "Filtering on the smallest group size keeps genes seen in a single sample.",
                        severity="warning"
                    ))

    if metadata.index.duplicated().any():
        n_duplicates = metadata.index.duplicated().sum()
        errors.append(f"Metadata contains {n_duplicates} duplicate sample IDs")

    summary = {
        "n_samples": len(metadata),
        "n_columns": len(metadata.columns),
        "columns": metadata.columns.tolist()
    }
    if replicates_per_group:
        summary["groups"] = replicates_per_group

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary=summary
    )


def validate_analysis_inputs(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    group_column: Optional[str] = None
) -> ValidationResult:
    """
    Validate complete analysis inputs.

    Args:
        counts: Count matrix
        metadata: Sample metadata indexed by sample name
        group_column: Column defining experimental groups

    Returns:
        ValidationResult with combined validation from both inputs
    """
    counts_result = validate_count_matrix(counts)
    meta_result = validate_metadata(metadata, group_column=group_column)

    all_errors = counts_result.errors + meta_result.errors
    all_warnings = counts_result.warnings + meta_result.warnings

    missing_in_meta = set(counts.columns) - set(metadata.index)
    if missing_in_meta:
        all_errors.append(
            f"Samples in count matrix but not in metadata: {', '.join(sorted(missing_in_meta))}"
        )

    summary = {
        "counts": counts_result.summary,
        "metadata": meta_result.summary
    }

    return ValidationResult(
        valid=len(all_errors) == 0,
        errors=all_errors,
        warnings=all_warnings,
        summary=summary
    )


def log_validation(result: ValidationResult) -> Tuple[int, int]:
    """Log warnings and errors of a validation result; return their counts."""
    for warning in result.warnings:
        if warning.severity == "info":
            logger.info(warning.message)
        else:
            logger.warning(warning.message)
    for error in result.errors:
        logger.error(error)
    return len(result.errors), len(result.warnings)
