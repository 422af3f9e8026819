"""Counts-per-million, expression filtering and TMM normalization.

The analysis runs in one direction only::

    CountMatrix -> CPM -> FilteredCountMatrix -> norm factors -> LogCpmMatrix

Every stage returns a new frozen value; nothing is modified in place.
"""

import logging
from typing import Optional, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator
from scipy.stats import rankdata

from .validation import DegenerateInput, DimensionMismatch, InputFormatError


logger = logging.getLogger(__name__)

CPM_SCALE = 1e6


class CountMatrix(BaseModel):
    """Raw integer counts, genes x samples, with optional per-gene annotation."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    counts: pd.DataFrame
    annotation: Optional[pd.DataFrame] = None

    @field_validator('counts')
    @classmethod
    def check_counts(cls, v: pd.DataFrame) -> pd.DataFrame:
        if v.index.duplicated().any():
            raise InputFormatError("Gene identifiers must be unique")
        if v.isna().any().any():
            raise InputFormatError("Counts must not contain missing values")
        if (v < 0).any().any():
            raise InputFormatError("Counts must be non-negative")
        return v.copy()

    @property
    def genes(self) -> pd.Index:
        return self.counts.index

    @property
    def samples(self) -> pd.Index:
        return self.counts.columns

    @property
    def library_sizes(self) -> pd.Series:
        """Column sums of the raw counts."""
        return self.counts.sum(axis=0).astype(float)

    def with_samples(self, samples) -> "CountMatrix":
        """Return a copy whose sample columns are renamed to ``samples``."""
        samples = list(samples)
        if len(samples) != self.counts.shape[1]:
            raise DimensionMismatch(
                f"Expected {self.counts.shape[1]} sample names, got {len(samples)}"
            )
        counts = self.counts.copy()
        counts.columns = samples
        return CountMatrix(counts=counts, annotation=self.annotation)


class FilteredCountMatrix(CountMatrix):
    """Counts of the genes that passed the expression filter.

    ``norm_factors`` is ``None`` until :func:`normalize` has been applied,
    which is treated as all factors being 1.
    """

    threshold: float
    min_samples: int
    n_removed: int = Field(default=0, ge=0)
    norm_factors: Optional[pd.Series] = None

    @property
    def effective_library_sizes(self) -> pd.Series:
        if self.norm_factors is None:
            return self.library_sizes
        return self.library_sizes * self.norm_factors


class LogCpmMatrix(BaseModel):
    """log2 counts-per-million of a filtered matrix."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    data: pd.DataFrame
    prior_count: float
    normalized: bool


class PipelineResult(BaseModel):
    """Everything derived from one pass over a count matrix."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    counts: CountMatrix
    cpm: pd.DataFrame
    filtered: FilteredCountMatrix
    normalized: FilteredCountMatrix
    log_cpm: LogCpmMatrix
    log_cpm_unnormalized: LogCpmMatrix


def _as_frame(counts: Union[CountMatrix, pd.DataFrame]) -> pd.DataFrame:
    if isinstance(counts, CountMatrix):
        return counts.counts
    return counts


def _check_library_sizes(library_sizes: pd.Series, samples: pd.Index) -> pd.Series:
    library_sizes = pd.Series(np.asarray(library_sizes, dtype=float), index=samples)
    empty = library_sizes[~(library_sizes > 0)]
    if len(empty) > 0:
        raise DegenerateInput(
            f"Library size must be positive; zero or negative for: "
            f"{', '.join(map(str, empty.index))}"
        )
    return library_sizes


def compute_cpm(
    counts: Union[CountMatrix, pd.DataFrame],
    library_sizes: Optional[Union[pd.Series, np.ndarray, list]] = None
) -> pd.DataFrame:
    """
    Convert counts to counts-per-million.

    Args:
        counts: Count matrix (genes x samples)
        library_sizes: One positive value per sample; column sums if None

    Returns:
        DataFrame of the same shape with ``count / library_size * 1e6``

    Raises:
        DimensionMismatch: if the number of library sizes differs from the
            number of columns
        DegenerateInput: if any library size is zero or negative
    """
    frame = _as_frame(counts)

    if library_sizes is None:
        library_sizes = frame.sum(axis=0)
    elif len(library_sizes) != frame.shape[1]:
        raise DimensionMismatch(
            f"Got {len(library_sizes)} library sizes for {frame.shape[1]} samples"
        )

    library_sizes = _check_library_sizes(library_sizes, frame.columns)
    return frame.astype(float).div(library_sizes, axis=1) * CPM_SCALE


def filter_by_expression(
    cpm: pd.DataFrame,
    counts: Union[CountMatrix, pd.DataFrame],
    threshold: float = 0.5,
    min_samples: int = 2
) -> FilteredCountMatrix:
    """
    Keep genes whose CPM exceeds ``threshold`` in at least ``min_samples`` samples.

    Args:
        cpm: CPM matrix aligned with ``counts``
        counts: Raw counts the retained rows are taken from
        threshold: CPM a sample must exceed for the gene to count as expressed
        min_samples: Number of samples in which the gene must be expressed

    Returns:
        FilteredCountMatrix holding the retained rows of ``counts`` in their
        original order
    """
    if threshold <= 0:
        raise ValueError(f"threshold must be positive, got {threshold}")
    if int(min_samples) != min_samples or min_samples < 1:
        raise ValueError(f"min_samples must be a positive integer, got {min_samples}")

    frame = _as_frame(counts)
    if cpm.shape != frame.shape:
        raise DimensionMismatch(
            f"CPM matrix shape {cpm.shape} does not match count matrix shape {frame.shape}"
        )
    if not cpm.index.equals(frame.index) or not cpm.columns.equals(frame.columns):
        raise DimensionMismatch("CPM matrix and count matrix are not aligned")

    keep = (cpm > threshold).sum(axis=1) >= min_samples
    n_kept = int(keep.sum())
    if n_kept == 0:
        raise DegenerateInput(
            f"No gene has CPM > {threshold} in at least {min_samples} samples"
        )

    logger.info(
        f"Kept {n_kept} of {len(keep)} genes with CPM > {threshold} in >= {min_samples} samples"
    )

    annotation = None
    if isinstance(counts, CountMatrix) and counts.annotation is not None:
        annotation = counts.annotation.loc[keep[keep].index]

    return FilteredCountMatrix(
        counts=frame.loc[keep],
        annotation=annotation,
        threshold=threshold,
        min_samples=int(min_samples),
        n_removed=len(keep) - n_kept
    )


def _tmm_factor(
    obs: np.ndarray,
    ref: np.ndarray,
    lib_obs: float,
    lib_ref: float,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    do_weighting: bool = True,
    a_cutoff: float = -1e10
) -> float:
    """Trimmed mean of M-values of one sample against the reference."""
    with np.errstate(divide='ignore', invalid='ignore'):
        log_obs = np.log2(obs / lib_obs)
        log_ref = np.log2(ref / lib_ref)
        log_r = log_obs - log_ref
        abs_e = (log_obs + log_ref) / 2
        v = (lib_obs - obs) / lib_obs / obs + (lib_ref - ref) / lib_ref / ref

    fin = np.isfinite(log_r) & np.isfinite(abs_e) & (abs_e > a_cutoff)
    log_r, abs_e, v = log_r[fin], abs_e[fin], v[fin]

    # identical composition
    if len(log_r) == 0 or np.max(np.abs(log_r)) < 1e-6:
        return 1.0

    n = len(log_r)
    lo_l = np.floor(n * logratio_trim) + 1
    hi_l = n + 1 - lo_l
    lo_s = np.floor(n * sum_trim) + 1
    hi_s = n + 1 - lo_s

    rank_r = rankdata(log_r)
    rank_e = rankdata(abs_e)
    keep = (rank_r >= lo_l) & (rank_r <= hi_l) & (rank_e >= lo_s) & (rank_e <= hi_s)

    with np.errstate(divide='ignore', invalid='ignore'):
        if do_weighting:
            f = np.sum(log_r[keep] / v[keep]) / np.sum(1 / v[keep])
        else:
            f = np.mean(log_r[keep])

    if not np.isfinite(f):
        f = 0.0
    return float(2 ** f)


def calc_norm_factors(
    filtered: FilteredCountMatrix,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05
) -> pd.Series:
    """
    TMM normalization factors, one per sample.

    The reference sample is the one whose upper-quartile count proportion is
    closest to the mean upper quartile. Factors are scaled to a geometric
    mean of 1; multiply them with raw library sizes to get effective library
    sizes.

    Args:
        filtered: Output of :func:`filter_by_expression`
        logratio_trim: Fraction of M-values trimmed from each end
        sum_trim: Fraction of A-values trimmed from each end

    Returns:
        Series of positive factors indexed by sample
    """
    if not isinstance(filtered, FilteredCountMatrix):
        raise TypeError(
            "Normalization factors are computed from a FilteredCountMatrix; "
            "run filter_by_expression first"
        )

    frame = filtered.counts
    lib = _check_library_sizes(frame.sum(axis=0), frame.columns).to_numpy()

    x = frame.to_numpy(dtype=float)
    x = x[(x > 0).any(axis=1)]

    if x.shape[0] == 0 or x.shape[1] == 1:
        return pd.Series(1.0, index=frame.columns, name="norm_factor")

    f75 = np.quantile(x / lib, 0.75, axis=0)
    if np.min(f75) == 0:
        logger.warning("One or more upper quartiles are zero; TMM reference may be unreliable")
    ref_column = int(np.argmin(np.abs(f75 - f75.mean())))
    logger.debug(f"TMM reference sample: {frame.columns[ref_column]}")

    factors = np.array([
        _tmm_factor(
            x[:, j], x[:, ref_column], lib[j], lib[ref_column],
            logratio_trim=logratio_trim, sum_trim=sum_trim
        )
        for j in range(x.shape[1])
    ])

    factors = factors / np.exp(np.mean(np.log(factors)))
    return pd.Series(factors, index=frame.columns, name="norm_factor")


def normalize(filtered: FilteredCountMatrix) -> FilteredCountMatrix:
    """Return a copy of ``filtered`` carrying its TMM normalization factors."""
    factors = calc_norm_factors(filtered)
    logger.info(
        "TMM factors: " + ", ".join(f"{s}={f:.3f}" for s, f in factors.items())
    )
    return FilteredCountMatrix(
        counts=filtered.counts,
        annotation=filtered.annotation,
        threshold=filtered.threshold,
        min_samples=filtered.min_samples,
        n_removed=filtered.n_removed,
        norm_factors=factors
    )


def log_cpm(
    filtered: FilteredCountMatrix,
    library_sizes: Optional[Union[pd.Series, np.ndarray, list]] = None,
    prior_count: float = 0.5
) -> LogCpmMatrix:
    """
    log2 counts-per-million with a library-size scaled prior count.

    The prior is scaled by ``lib / mean(lib)`` for each sample and library
    sizes are increased by twice the scaled prior, so that genes with zero
    counts map to a finite value.

    Args:
        filtered: Filtered counts
        library_sizes: Library sizes to use; effective library sizes
            (raw size x norm factor) if None
        prior_count: Average count added to each observation

    Returns:
        LogCpmMatrix of the same shape as ``filtered.counts``
    """
    if not isinstance(filtered, FilteredCountMatrix):
        raise TypeError("log-CPM is computed from a FilteredCountMatrix")
    if prior_count <= 0:
        raise ValueError(f"prior_count must be positive, got {prior_count}")

    frame = filtered.counts
    if library_sizes is None:
        library_sizes = filtered.effective_library_sizes
    elif len(library_sizes) != frame.shape[1]:
        raise DimensionMismatch(
            f"Got {len(library_sizes)} library sizes for {frame.shape[1]} samples"
        )
    lib = _check_library_sizes(library_sizes, frame.columns)

    prior = prior_count * lib / lib.mean()
    lib_adjusted = lib + 2 * prior
    values = np.log2(frame.astype(float).add(prior, axis=1).div(lib_adjusted, axis=1) * CPM_SCALE)

    return LogCpmMatrix(
        data=values,
        prior_count=prior_count,
        normalized=filtered.norm_factors is not None
    )


def run_pipeline(
    counts: CountMatrix,
    threshold: float = 0.5,
    min_samples: int = 2,
    prior_count: float = 0.5
) -> PipelineResult:
    """
    Run CPM, filtering, TMM normalization and log-CPM in order.

    Args:
        counts: Raw counts aligned with the sample metadata
        threshold: CPM threshold for :func:`filter_by_expression`
        min_samples: Minimum number of expressing samples
        prior_count: Prior count for :func:`log_cpm`

    Returns:
        PipelineResult with every intermediate value
    """
    logger.info(f"Starting pipeline on {counts.counts.shape[0]} genes x {counts.counts.shape[1]} samples")

    cpm = compute_cpm(counts)
    filtered = filter_by_expression(cpm, counts, threshold=threshold, min_samples=min_samples)
    normalized = normalize(filtered)

    return PipelineResult(
        counts=counts,
        cpm=cpm,
        filtered=filtered,
        normalized=normalized,
        log_cpm=log_cpm(normalized, prior_count=prior_count),
        log_cpm_unnormalized=log_cpm(filtered, prior_count=prior_count)
    )
