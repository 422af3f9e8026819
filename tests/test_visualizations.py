"""Unit tests for diagnostic figures."""

import pytest
import pandas as pd
import numpy as np
import plotly.graph_objects as go

from rnaseq_explorer.visualizations import (
    create_cpm_threshold_plot,
    create_library_size_plot,
    create_logcpm_boxplot,
    create_md_plot,
    create_mds_plot,
    create_pca_plot,
    create_rle_plot,
    create_variable_gene_heatmap,
    mds_coordinates,
    mean_difference,
    top_variable_genes
)
from rnaseq_explorer.validation import ExplorerError, UnknownSample


@pytest.fixture
def log_cpm():
    """log2-CPM-like values for 300 genes x 6 samples in two groups."""
    rng = np.random.default_rng(7)
    values = rng.normal(5, 2, (300, 1)) + rng.normal(0, 0.3, (300, 6))
    values[:30, 3:] += 3
    return pd.DataFrame(
        values,
        index=[f"Gene_{i}" for i in range(300)],
        columns=[f"S{i + 1}" for i in range(6)]
    )


@pytest.fixture
def metadata(log_cpm):
    return pd.DataFrame({
        'CellType': pd.Categorical(['basal'] * 3 + ['luminal'] * 3)
    }, index=log_cpm.columns)


@pytest.fixture
def groups(metadata):
    return metadata['CellType'].rename('group')


class TestMds:
    """Tests for multidimensional scaling."""

    def test_groups_separate_on_first_dimension(self, log_cpm):
        coords, var_exp = mds_coordinates(log_cpm, top=50)

        assert list(coords.columns) == ['Dim1', 'Dim2']
        first = coords['Dim1']
        assert np.sign(first[:3]).nunique() == 1
        assert np.sign(first[3:]).nunique() == 1
        assert np.sign(first.iloc[0]) != np.sign(first.iloc[3])
        assert var_exp[0] > var_exp[1]

    def test_identical_samples_coincide(self, log_cpm):
        data = log_cpm.copy()
        data['S2'] = data['S1']
        coords, _ = mds_coordinates(data)
        np.testing.assert_allclose(coords.loc['S1'], coords.loc['S2'], atol=1e-8)

    def test_too_few_samples(self, log_cpm):
        with pytest.raises(ValueError):
            mds_coordinates(log_cpm[['S1', 'S2']])


class TestHelpers:
    """Tests for data helpers behind the plots."""

    def test_top_variable_genes(self, log_cpm):
        genes = top_variable_genes(log_cpm, 30)
        assert len(genes) == 30
        assert len(set(genes) & {f"Gene_{i}" for i in range(30)}) >= 25

    def test_top_variable_genes_skips_constant(self, log_cpm):
        data = log_cpm.iloc[:5].copy()
        data.iloc[0] = 1.0
        assert "Gene_0" not in top_variable_genes(data, 10)

    def test_mean_difference(self):
        data = pd.DataFrame({'A': [4.0, 2.0], 'B': [2.0, 2.0], 'C': [0.0, 2.0]})
        md = mean_difference(data, 'A')
        assert md['M'].tolist() == [3.0, 0.0]
        assert md['A'].tolist() == [2.5, 2.0]

    def test_mean_difference_by_position(self):
        data = pd.DataFrame({'A': [4.0], 'B': [2.0]})
        assert mean_difference(data, 1)['M'].tolist() == [-2.0]

    def test_unknown_sample(self, log_cpm):
        with pytest.raises(UnknownSample):
            mean_difference(log_cpm, 'nope')

    def test_sample_position_out_of_range(self, log_cpm):
        with pytest.raises(ExplorerError):
            create_md_plot(log_cpm, 6)

    def test_negative_position_counts_from_end(self, log_cpm):
        assert 'S6' in create_md_plot(log_cpm, -1).layout.title.text


class TestFigures:
    """Each figure function returns a populated plotly figure."""

    def test_library_size_plot(self, log_cpm, groups):
        sizes = pd.Series([2e7, 2.5e7, 1.8e7, 2.2e7, 2.1e7, 1.9e7], index=log_cpm.columns)
        fig = create_library_size_plot(sizes, groups)

        assert isinstance(fig, go.Figure)
        assert fig.data[0].y[0] == pytest.approx(20.0)
        legend = {t.name for t in fig.data[1:]}
        assert legend == {'basal', 'luminal'}

    def test_logcpm_boxplot(self, log_cpm, groups):
        fig = create_logcpm_boxplot(log_cpm, groups)
        assert len(fig.data) == 6

    def test_rle_plot_centered(self, log_cpm):
        fig = create_rle_plot(log_cpm)
        assert len(fig.data) == 6
        medians = [np.median(trace.y) for trace in fig.data]
        assert max(abs(m) for m in medians) < 1.0

    def test_mds_plot(self, log_cpm, metadata):
        fig = create_mds_plot(log_cpm, metadata, 'CellType')
        assert len(fig.data) == 2
        assert 'CellType' in fig.layout.title.text

    def test_pca_plot(self, log_cpm, metadata):
        fig = create_pca_plot(log_cpm, metadata, 'CellType')
        assert len(fig.data) == 2

    def test_heatmap(self, log_cpm, groups):
        fig = create_variable_gene_heatmap(log_cpm, groups, n_genes=40)
        heatmap = fig.data[0]

        assert isinstance(heatmap, go.Heatmap)
        assert np.asarray(heatmap.z).shape == (40, 6)
        assert all('(' in label for label in heatmap.x)

    def test_md_plot(self, log_cpm):
        fig = create_md_plot(log_cpm, 'S4')
        assert len(fig.data[0].x) == 300
        assert 'S4' in fig.layout.title.text

    def test_cpm_threshold_plot(self):
        counts = pd.DataFrame({'S1': [0, 5, 10, 1000000 - 15]})
        cpm = counts / 1e6 * 1e6
        fig = create_cpm_threshold_plot(cpm, counts, 'S1', threshold=0.5)
        assert len(fig.data) == 1
        assert fig.layout.xaxis.range == (0, 3.0)
