"""Run the exploratory analysis end to end and write the diagnostic plots."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import plotly.graph_objects as go
import yaml
from pydantic import ValidationError

from .config import Config, get_config
from .metadata import SampleMetadata
from .normalization import CountMatrix, PipelineResult, run_pipeline
from .validation import (
    DegenerateInput,
    ExplorerError,
    InputFormatError,
    check_sample_alignment,
    log_validation,
    normalize_sample_ids,
    read_count_table,
    read_sample_table,
    validate_analysis_inputs
)
from .visualizations import (
    create_cpm_threshold_plot,
    create_library_size_plot,
    create_logcpm_boxplot,
    create_md_plot,
    create_mds_plot,
    create_pca_plot,
    create_rle_plot,
    create_variable_gene_heatmap,
    MIN_MDS_SAMPLES
)


logger = logging.getLogger(__name__)


def load_inputs(
    counts_path: Union[str, Path],
    samples_path: Union[str, Path],
    config: Config
) -> Tuple[CountMatrix, SampleMetadata]:
    """
    Read both tables and line up their samples.

    Count table sample names are truncated to ``inputs.sample_id_width``
    characters and must then equal the sample table's sample column, in
    order.

    Raises:
        InputFormatError: if a file is unreadable or fails validation
        DimensionMismatch: if the samples do not line up
        DegenerateInput: if a sample has no counts at all
    """
    inputs = config.inputs
    counts = read_count_table(
        counts_path,
        delimiter=inputs.delimiter,
        annotation_columns=inputs.annotation_columns
    )
    sample_table = read_sample_table(
        samples_path,
        sample_column=inputs.sample_column,
        delimiter=inputs.delimiter
    )

    count_ids = normalize_sample_ids(counts.samples, width=inputs.sample_id_width)
    metadata_ids = normalize_sample_ids(sample_table[inputs.sample_column], width=None)
    check_sample_alignment(count_ids, metadata_ids)
    counts = counts.with_samples(count_ids)

    library_sizes = counts.library_sizes
    empty = library_sizes.index[library_sizes == 0].tolist()
    if empty:
        raise DegenerateInput(f"Sample(s) with no counts: {', '.join(map(str, empty))}")

    metadata = SampleMetadata.from_frame(
        sample_table,
        sample_column=inputs.sample_column,
        factor_columns=inputs.factor_columns,
        levels=inputs.factor_levels
    )

    validation = validate_analysis_inputs(
        counts.counts,
        metadata.table.assign(group=metadata.groups()),
        group_column="group"
    )
    log_validation(validation)
    if not validation.valid:
        raise InputFormatError("Input validation failed: " + "; ".join(validation.errors))

    return counts, metadata


def build_figures(
    result: PipelineResult,
    metadata: SampleMetadata,
    config: Config
) -> Dict[str, go.Figure]:
    """Create every diagnostic figure, keyed by output file stem, in display order."""
    plots = config.plots
    groups = metadata.groups()
    log_cpm = result.log_cpm.data
    log_cpm_raw = result.log_cpm_unnormalized.data

    figures = {}
    figures["cpm_threshold"] = create_cpm_threshold_plot(
        result.cpm,
        result.counts.counts,
        sample=plots.cpm_plot_sample,
        threshold=result.filtered.threshold
    )
    figures["library_sizes"] = create_library_size_plot(result.filtered.library_sizes, groups)
    figures["logcpm_boxplot"] = create_logcpm_boxplot(
        log_cpm_raw, groups, title="Boxplots of log2-CPM (unnormalised)"
    )
    figures["rle_unnormalised"] = create_rle_plot(
        log_cpm_raw, groups, title="Relative log expression (unnormalised)"
    )
    figures["rle_normalised"] = create_rle_plot(
        log_cpm, groups, title="Relative log expression (TMM normalised)"
    )

    if log_cpm_raw.shape[1] < MIN_MDS_SAMPLES:
        logger.warning(
            f"Skipping MDS plots: {log_cpm_raw.shape[1]} samples, "
            f"at least {MIN_MDS_SAMPLES} needed"
        )
    else:
        for factor in metadata.factors:
            figures[f"mds_{factor.name}"] = create_mds_plot(
                log_cpm_raw, metadata.table, color_by=factor.name, top=plots.mds_top
            )
    figures["pca"] = create_pca_plot(
        log_cpm, metadata.table.assign(group=groups), color_by="group"
    )

    figures["variable_genes_heatmap"] = create_variable_gene_heatmap(
        log_cpm_raw, groups, n_genes=plots.n_variable_genes
    )
    figures["md_unnormalised"] = create_md_plot(
        log_cpm_raw, plots.md_sample, title="MD plot (unnormalised)"
    )
    figures["md_normalised"] = create_md_plot(
        log_cpm, plots.md_sample, title="MD plot (TMM normalised)"
    )

    return figures


def write_figures(
    figures: Dict[str, go.Figure],
    output_dir: Path,
    width: int = 900,
    height: int = 600,
    scale: float = 1.0
) -> List[Path]:
    """Render each figure to ``<output_dir>/<name>.png``."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    written = []
    for name, fig in figures.items():
        path = output_dir / f"{name}.png"
        fig.write_image(str(path), width=width, height=height, scale=scale)
        logger.info(f"Wrote {path}")
        written.append(path)
    return written


def run_analysis(
    counts_path: Union[str, Path],
    samples_path: Union[str, Path],
    config: Optional[Config] = None
) -> List[Path]:
    """
    Load inputs, run the filtering and normalization pipeline, and write all plots.

    Args:
        counts_path: Count table
        samples_path: Sample table
        config: Configuration; the global configuration if None

    Returns:
        Paths of the written PNG files
    """
    config = config or get_config()
    counts, metadata = load_inputs(counts_path, samples_path, config)

    min_samples = config.defaults.min_samples
    if min_samples is None:
        min_samples = metadata.min_group_size()
        logger.info(f"Using smallest group size {min_samples} as minimum number of samples")

    result = run_pipeline(
        counts,
        threshold=config.defaults.cpm_threshold,
        min_samples=min_samples,
        prior_count=config.defaults.prior_count
    )

    figures = build_figures(result, metadata, config)
    return write_figures(
        figures,
        config.paths.output_dir,
        width=config.plots.image_width,
        height=config.plots.image_height,
        scale=config.plots.image_scale
    )


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rnaseq-explorer",
        description="Filter, normalize and plot an RNA-seq count table"
    )
    parser.add_argument("counts", help="Count table (gene id, length, one column per sample)")
    parser.add_argument("samples", help="Sample table with one row per sample")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--output-dir", type=Path, help="Directory for PNG output")
    parser.add_argument("--threshold", type=float, help="CPM threshold (default: 0.5)")
    parser.add_argument("--min-samples", type=int,
                        help="Samples that must pass the threshold (default: smallest group size)")
    parser.add_argument("--prior-count", type=float, help="Prior count for log-CPM (default: 0.5)")
    parser.add_argument("--sample-id-width", type=int,
                        help="Truncate count table sample names to this width; 0 keeps them whole")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> Config:
    """Apply command-line overrides on top of the file or default configuration."""
    config = Config.from_yaml(args.config) if args.config else get_config()
    data = config.model_dump()

    if args.output_dir is not None:
        data["paths"]["output_dir"] = args.output_dir
    if args.threshold is not None:
        data["defaults"]["cpm_threshold"] = args.threshold
    if args.min_samples is not None:
        data["defaults"]["min_samples"] = args.min_samples
    if args.prior_count is not None:
        data["defaults"]["prior_count"] = args.prior_count
    if args.sample_id_width is not None:
        data["inputs"]["sample_id_width"] = args.sample_id_width or None
    if args.log_level is not None:
        data["log_level"] = args.log_level

    return Config(**data)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point."""
    args = _parse_args(argv)
    try:
        config = config_from_args(args)
    except (ValidationError, OSError, yaml.YAMLError) as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Invalid configuration: {e}")
        return 1

    logging.basicConfig(
        level=logging.DEBUG if config.debug else config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        written = run_analysis(args.counts, args.samples, config)
    except ExplorerError as e:
        logger.error(f"Analysis failed: {e}")
        return 1

    logger.info(f"Wrote {len(written)} plots to {config.paths.output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
