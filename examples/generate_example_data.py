"""Generate an example count table and sample table for the RNA-seq explorer."""

import numpy as np
import pandas as pd
from pathlib import Path


CELL_TYPES = ["basal", "luminal"]
STATUSES = ["virgin", "pregnant", "lactating"]


def generate_example_data(
    n_genes: int = 5000,
    n_replicates: int = 2,
    n_de_genes: int = 400,
    fold_change_range: tuple = (2, 8),
    fraction_unexpressed: float = 0.3,
    output_dir: str = "examples",
    seed: int = 42
):
    """
    Generate a synthetic count table with two cell types and three statuses.

    Sample columns in the count table carry sequencing-run suffixes (e.g.
    ``MCL1.DG_BC2CTUACXX_ACTTGA_L002_R1``) whose first seven characters are
    the sample names listed in the sample table.

    Args:
        n_genes: Total number of genes
        n_replicates: Replicates per cell type and status combination
        n_de_genes: Number of genes changed between groups
        fold_change_range: (min, max) fold change for changed genes
        fraction_unexpressed: Fraction of genes with near-zero expression
        output_dir: Directory to save files
        seed: Random seed for reproducibility
    """
    rng = np.random.default_rng(seed)

    groups = [(c, s) for c in CELL_TYPES for s in STATUSES]
    n_samples = len(groups) * n_replicates

    gene_ids = [str(497097 + 13 * i) for i in range(n_genes)]
    lengths = rng.integers(300, 12000, n_genes)

    base_expression = rng.lognormal(mean=3, sigma=2, size=n_genes)
    unexpressed = rng.choice(n_genes, int(n_genes * fraction_unexpressed), replace=False)
    base_expression[unexpressed] = rng.uniform(0, 0.05, len(unexpressed))

    de_indices = rng.choice(
        np.setdiff1d(np.arange(n_genes), unexpressed), n_de_genes, replace=False
    )

    counts = np.zeros((n_genes, n_samples), dtype=np.int64)
    sample_rows = []
    letters = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"

    col = 0
    for g, (cell_type, status) in enumerate(groups):
        expression = base_expression.copy()
        group_de = de_indices[g::len(groups)]
        fc = rng.uniform(fold_change_range[0], fold_change_range[1], len(group_de))
        expression[group_de] *= fc

        for r in range(n_replicates):
            depth = rng.uniform(0.6, 1.4)
            dispersion = rng.uniform(0.05, 0.2, n_genes)
            mu = expression * depth
            counts[:, col] = rng.negative_binomial(
                n=1 / dispersion,
                p=1 / (1 + mu * dispersion)
            )
            sample = f"MCL1.{letters[col // 26]}{letters[col % 26]}"
            sample_rows.append({
                "FileName": f"{sample}_BC2CTUACXX_ACTTGA_L00{r + 1}_R1",
                "SampleName": sample,
                "CellType": cell_type,
                "Status": status
            })
            col += 1

    sampleinfo = pd.DataFrame(sample_rows)

    count_table = pd.DataFrame(counts, columns=sampleinfo["FileName"])
    count_table.insert(0, "Length", lengths)
    count_table.insert(0, "EntrezGeneID", gene_ids)

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    count_table.to_csv(output_path / "counts.txt", sep='\t', index=False)
    sampleinfo.to_csv(output_path / "sampleinfo.txt", sep='\t', index=False)

    print(f"Generated example data:")
    print(f"  - Genes: {n_genes} ({len(unexpressed)} essentially unexpressed)")
    print(f"  - Samples: {n_samples} ({len(groups)} groups x {n_replicates} replicates)")
    print(f"  - Changed genes: {n_de_genes}")
    print(f"  - Files saved to: {output_path.absolute()}")

    return count_table, sampleinfo


def generate_minimal_dataset(output_dir: str = "examples/minimal"):
    """Generate a minimal dataset for quick testing."""
    return generate_example_data(
        n_genes=300,
        n_replicates=2,
        n_de_genes=30,
        output_dir=output_dir,
        seed=42
    )


if __name__ == "__main__":
    print("Generating standard example dataset...")
    generate_example_data()

    print("\nGenerating minimal dataset...")
    generate_minimal_dataset()
