"""Diagnostic plots for filtered and normalized RNA-seq counts."""

from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
from scipy.cluster.hierarchy import linkage, dendrogram
from scipy.linalg import eigh

from .validation import UnknownSample


PALETTE = px.colors.qualitative.Plotly
MIN_MDS_SAMPLES = 3


def _group_colors(groups: Optional[pd.Series], samples: pd.Index) -> Tuple[list, Dict[str, str]]:
    """Colour per sample and the colour assigned to each group level."""
    if groups is None:
        return [PALETTE[0]] * len(samples), {}
    groups = groups.reindex(samples)
    if isinstance(groups.dtype, pd.CategoricalDtype):
        levels = list(groups.cat.categories)
    else:
        levels = list(pd.unique(groups))
    color_map = {str(level): PALETTE[i % len(PALETTE)] for i, level in enumerate(levels)}
    return [color_map[str(g)] for g in groups], color_map


def _resolve_sample(data: pd.DataFrame, sample: Union[int, str]) -> str:
    """Accept a sample name or a column position."""
    if isinstance(sample, str) and sample in data.columns:
        return sample
    if isinstance(sample, str) and sample.isdigit():
        sample = int(sample)
    if isinstance(sample, int) and -len(data.columns) <= sample < len(data.columns):
        return data.columns[sample]
    raise UnknownSample(
        f"Sample '{sample}' not found among {len(data.columns)} samples"
    )


def create_library_size_plot(
    library_sizes: pd.Series,
    groups: Optional[pd.Series] = None,
    title: str = "Library Sizes"
) -> go.Figure:
    """
    Bar chart of library sizes in millions of reads.

    Args:
        library_sizes: Total counts per sample
        groups: Group label per sample, used for colouring
        title: Plot title

    Returns:
        Plotly Figure object
    """
    colors, color_map = _group_colors(groups, library_sizes.index)
    millions = library_sizes / 1e6

    fig = go.Figure(go.Bar(
        x=library_sizes.index.astype(str),
        y=millions,
        marker_color=colors,
        hovertemplate='%{x}<br>%{y:.2f} M reads<extra></extra>',
        showlegend=False
    ))

    # Legend entries only
    for level, color in color_map.items():
        fig.add_trace(go.Bar(x=[None], y=[None], marker_color=color, name=level))

    fig.update_layout(
        title=title,
        xaxis_title="Sample",
        yaxis_title="Library size (millions)",
        template='plotly_white',
        xaxis=dict(tickangle=-45)
    )

    return fig


def _per_sample_boxes(
    values: pd.DataFrame,
    groups: Optional[pd.Series],
    title: str,
    yaxis_title: str
) -> go.Figure:
    colors, _ = _group_colors(groups, values.columns)

    fig = go.Figure()
    for sample, color in zip(values.columns, colors):
        label = str(sample)
        if groups is not None:
            label = f"{sample} ({groups[sample]})"
        fig.add_trace(go.Box(
            y=values[sample],
            name=label,
            marker_color=color,
            boxpoints=False,
            showlegend=False
        ))

    fig.update_layout(
        title=title,
        xaxis_title="Sample",
        yaxis_title=yaxis_title,
        template='plotly_white',
        xaxis=dict(tickangle=-45)
    )
    return fig


def create_logcpm_boxplot(
    log_cpm: pd.DataFrame,
    groups: Optional[pd.Series] = None,
    title: str = "Boxplots of log2-CPM"
) -> go.Figure:
    """
    Per-sample distribution of log2-CPM with the overall median marked.

    Args:
        log_cpm: log2-CPM values (genes x samples)
        groups: Group label per sample
        title: Plot title

    Returns:
        Plotly Figure object
    """
    fig = _per_sample_boxes(log_cpm, groups, title, "log<sub>2</sub> CPM")
    fig.add_hline(
        y=float(np.median(log_cpm.to_numpy())),
        line_dash="dash",
        line_color="blue",
        annotation_text="median",
        annotation_position="right"
    )
    return fig


def create_rle_plot(
    log_cpm: pd.DataFrame,
    groups: Optional[pd.Series] = None,
    title: str = "Relative Log Expression"
) -> go.Figure:
    """
    Relative log expression: each gene's log2-CPM minus its median across samples.

    Well-normalized samples have boxes centred on zero with similar spread.
    """
    rle = log_cpm.sub(log_cpm.median(axis=1), axis=0)
    fig = _per_sample_boxes(rle, groups, title, "Relative log expression")
    fig.add_hline(y=0, line_color="black", line_width=1)
    return fig


def mds_coordinates(
    log_cpm: pd.DataFrame,
    top: int = 500,
    n_dims: int = 2
) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Classical multidimensional scaling on leading log-fold-change distances.

    The distance between two samples is the root mean square of the ``top``
    largest squared log2-CPM differences between them.

    Args:
        log_cpm: log2-CPM values (genes x samples)
        top: Number of genes used for each pairwise distance
        n_dims: Number of dimensions to return

    Returns:
        Tuple of (coordinates indexed by sample, fraction of variance per dimension)
    """
    x = log_cpm.to_numpy(dtype=float)
    n_samples = x.shape[1]
    if n_samples < MIN_MDS_SAMPLES:
        raise ValueError(f"MDS needs at least {MIN_MDS_SAMPLES} samples")
    n_dims = min(n_dims, n_samples - 1)
    top = min(top, x.shape[0])

    dist = np.zeros((n_samples, n_samples))
    for i in range(1, n_samples):
        for j in range(i):
            d = np.sort((x[:, i] - x[:, j]) ** 2)[::-1][:top]
            dist[i, j] = dist[j, i] = np.sqrt(np.mean(d))

    # Double-centre the squared distances
    a = dist ** 2
    centering = np.eye(n_samples) - np.ones((n_samples, n_samples)) / n_samples
    b = -0.5 * centering @ a @ centering

    eigenvalues, eigenvectors = eigh(b)
    order = np.argsort(eigenvalues)[::-1]
    eigenvalues, eigenvectors = eigenvalues[order], eigenvectors[:, order]
    positive = np.clip(eigenvalues, 0, None)

    coords = eigenvectors[:, :n_dims] * np.sqrt(positive[:n_dims])
    var_explained = positive / positive.sum() if positive.sum() > 0 else positive

    coords_df = pd.DataFrame(
        coords,
        index=log_cpm.columns,
        columns=[f"Dim{k + 1}" for k in range(n_dims)]
    )
    return coords_df, var_explained[:n_dims]


def create_mds_plot(
    log_cpm: pd.DataFrame,
    metadata: pd.DataFrame,
    color_by: str,
    top: int = 500,
    title: Optional[str] = None
) -> go.Figure:
    """
    MDS plot of samples coloured by a metadata factor.

    Args:
        log_cpm: log2-CPM values (genes x samples)
        metadata: Sample metadata indexed by sample
        color_by: Metadata column for colouring samples
        top: Number of genes used for each pairwise distance
        title: Plot title

    Returns:
        Plotly Figure object
    """
    coords, var_exp = mds_coordinates(log_cpm, top=top)
    coords = coords.join(metadata[[color_by]].astype(str))

    fig = px.scatter(
        coords,
        x='Dim1',
        y='Dim2',
        color=color_by,
        text=coords.index,
        title=title or f"MDS plot coloured by {color_by}",
        labels={
            'Dim1': f'Leading logFC dim 1 ({var_exp[0] * 100:.1f}%)',
            'Dim2': f'Leading logFC dim 2 ({var_exp[1] * 100:.1f}%)'
        }
    )

    fig.update_traces(
        marker=dict(size=12, line=dict(width=1, color='white')),
        textposition='top center'
    )

    fig.update_layout(
        template='plotly_white',
        showlegend=True
    )

    return fig


def create_pca_plot(
    log_cpm: pd.DataFrame,
    metadata: pd.DataFrame,
    color_by: str,
    title: str = "PCA Plot"
) -> go.Figure:
    """
    Create PCA plot of samples.

    Args:
        log_cpm: log2-CPM values
        metadata: Sample metadata
        color_by: Column for coloring samples
        title: Plot title

    Returns:
        Plotly Figure object
    """
    from sklearn.decomposition import PCA

    # Transpose (samples as rows)
    data = log_cpm.T

    # Remove genes with zero variance
    data = data.loc[:, data.var() > 0]

    pca = PCA(n_components=min(10, data.shape[0], data.shape[1]))
    pca_coords = pca.fit_transform(data)

    pca_df = pd.DataFrame(
        pca_coords[:, :2],
        index=data.index,
        columns=['PC1', 'PC2']
    )
    pca_df = pca_df.join(metadata[[color_by]].astype(str))

    var_exp = pca.explained_variance_ratio_ * 100

    fig = px.scatter(
        pca_df,
        x='PC1',
        y='PC2',
        color=color_by,
        text=pca_df.index,
        title=title,
        labels={
            'PC1': f'PC1 ({var_exp[0]:.1f}%)',
            'PC2': f'PC2 ({var_exp[1]:.1f}%)'
        }
    )

    fig.update_traces(
        marker=dict(size=12, line=dict(width=1, color='white')),
        textposition='top center'
    )

    fig.update_layout(
        template='plotly_white',
        showlegend=True
    )

    return fig


def top_variable_genes(log_cpm: pd.DataFrame, n_genes: int = 500) -> pd.Index:
    """Genes with the largest log2-CPM variance, most variable first."""
    variance = log_cpm.var(axis=1)
    variance = variance[variance > 0]
    return variance.sort_values(ascending=False).head(n_genes).index


def create_variable_gene_heatmap(
    log_cpm: pd.DataFrame,
    groups: Optional[pd.Series] = None,
    n_genes: int = 500,
    cluster_genes: bool = True,
    cluster_samples: bool = True,
    title: Optional[str] = None
) -> go.Figure:
    """
    Heatmap of the most variable genes, rows z-scored and clustered.

    Args:
        log_cpm: log2-CPM values
        groups: Group label per sample, shown in the column labels
        n_genes: Number of most variable genes to display
        cluster_genes: Whether to cluster genes
        cluster_samples: Whether to cluster samples
        title: Plot title

    Returns:
        Plotly Figure object
    """
    genes = top_variable_genes(log_cpm, n_genes)
    heatmap_data = log_cpm.loc[genes]

    # Z-score normalize
    heatmap_data = (heatmap_data.T - heatmap_data.mean(axis=1)) / heatmap_data.std(axis=1)
    heatmap_data = heatmap_data.T

    gene_order = list(range(len(genes)))
    sample_order = list(range(len(heatmap_data.columns)))

    if cluster_genes and len(genes) > 1:
        gene_linkage = linkage(heatmap_data.values, method='average', metric='correlation')
        gene_order = dendrogram(gene_linkage, no_plot=True)['leaves']

    if cluster_samples and len(heatmap_data.columns) > 1:
        sample_linkage = linkage(heatmap_data.T.values, method='average', metric='euclidean')
        sample_order = dendrogram(sample_linkage, no_plot=True)['leaves']

    heatmap_data = heatmap_data.iloc[gene_order, sample_order]

    columns = heatmap_data.columns.astype(str).tolist()
    if groups is not None:
        columns = [f"{s} ({groups[s]})" for s in heatmap_data.columns]

    fig = go.Figure(data=go.Heatmap(
        z=heatmap_data.values,
        x=columns,
        y=heatmap_data.index.astype(str),
        colorscale='RdYlBu_r',
        zmid=0,
        colorbar=dict(title="Z-score"),
        hovertemplate='Gene: %{y}<br>Sample: %{x}<br>Z-score: %{z:.2f}<extra></extra>'
    ))

    fig.update_layout(
        title=title or f"Top {len(genes)} most variable genes across samples",
        xaxis_title="Samples",
        yaxis_title="Genes",
        template='plotly_white',
        xaxis=dict(tickangle=-45),
        yaxis=dict(showticklabels=len(genes) <= 100, tickfont=dict(size=8))
    )

    return fig


def mean_difference(log_cpm: pd.DataFrame, sample: Union[int, str]) -> pd.DataFrame:
    """Average (A) and difference (M) of one sample against the mean of the others."""
    name = _resolve_sample(log_cpm, sample)
    own = log_cpm[name]
    others = log_cpm.drop(columns=name).mean(axis=1)
    return pd.DataFrame({'A': (own + others) / 2, 'M': own - others}, index=log_cpm.index)


def create_md_plot(
    log_cpm: pd.DataFrame,
    sample: Union[int, str] = 0,
    title: Optional[str] = None
) -> go.Figure:
    """
    Mean-difference plot of one sample against the average of the others.

    Args:
        log_cpm: log2-CPM values
        sample: Sample name or column position
        title: Plot title

    Returns:
        Plotly Figure object
    """
    name = _resolve_sample(log_cpm, sample)
    md = mean_difference(log_cpm, name)

    fig = go.Figure(go.Scattergl(
        x=md['A'],
        y=md['M'],
        mode='markers',
        marker=dict(color='#2C3E50', size=3, opacity=0.5),
        text=md.index.astype(str),
        hovertemplate='<b>%{text}</b><br>A: %{x:.2f}<br>M: %{y:.2f}<extra></extra>',
        showlegend=False
    ))

    fig.add_hline(y=0, line_color="grey", line_width=1)

    fig.update_layout(
        title=title or f"MD plot: {name} vs. others",
        xaxis_title="Average log<sub>2</sub> CPM",
        yaxis_title="log<sub>2</sub> fold change",
        template='plotly_white'
    )

    return fig


def create_cpm_threshold_plot(
    cpm: pd.DataFrame,
    counts: pd.DataFrame,
    sample: Union[int, str] = 0,
    threshold: float = 0.5,
    max_cpm: float = 3.0,
    max_count: float = 50.0,
    title: Optional[str] = None
) -> go.Figure:
    """
    CPM against raw count for one sample, with the CPM threshold marked.

    Shows which raw count the CPM threshold corresponds to for that
    sample's sequencing depth.
    """
    name = _resolve_sample(counts, sample)
    library_size = float(counts[name].sum())

    fig = go.Figure(go.Scattergl(
        x=cpm[name],
        y=counts[name],
        mode='markers',
        marker=dict(color='#34495E', size=4, opacity=0.6),
        showlegend=False
    ))

    fig.add_vline(
        x=threshold,
        line_dash="dash",
        line_color="#E74C3C",
        annotation_text=f"CPM = {threshold}",
        annotation_position="top right"
    )
    fig.add_hline(
        y=threshold * library_size / 1e6,
        line_dash="dot",
        line_color="#95A5A6",
        annotation_text=f"~{threshold * library_size / 1e6:.1f} reads",
        annotation_position="bottom right"
    )

    fig.update_layout(
        title=title or f"CPM vs. counts: {name}",
        xaxis_title="Counts per million",
        yaxis_title="Raw count",
        xaxis=dict(range=[0, max_cpm]),
        yaxis=dict(range=[0, max_count]),
        template='plotly_white'
    )

    return fig
