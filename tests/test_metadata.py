"""Unit tests for sample metadata factors."""

import pytest
import pandas as pd
from pydantic import ValidationError

from rnaseq_explorer.metadata import SampleFactor, SampleMetadata
from rnaseq_explorer.validation import InputFormatError


@pytest.fixture
def sample_table():
    """Two cell types x three statuses, two replicates each."""
    cell_types = ['basal'] * 6 + ['luminal'] * 6
    statuses = ['virgin', 'virgin', 'pregnant', 'pregnant', 'lactating', 'lactating'] * 2
    return pd.DataFrame({
        'FileName': [f"MCL1.D{c}_BC2CTUACXX" for c in "GHIJKLMNOPQR"],
        'SampleName': [f"MCL1.D{c}" for c in "GHIJKLMNOPQR"],
        'CellType': cell_types,
        'Status': statuses
    })


class TestSampleFactor:
    """Tests for categorical factors."""

    def test_levels_from_values_keep_first_appearance(self):
        factor = SampleFactor.from_values('Status', ['virgin', 'pregnant', 'virgin', 'lactating'])
        assert factor.levels == ('virgin', 'pregnant', 'lactating')

    def test_check_values(self):
        factor = SampleFactor(name='CellType', levels=('basal', 'luminal'))
        values = factor.check_values(['luminal', 'basal ', 'luminal'])
        assert list(values.categories) == ['basal', 'luminal']
        assert list(values) == ['luminal', 'basal', 'luminal']

    def test_unknown_level(self):
        factor = SampleFactor(name='CellType', levels=('basal', 'luminal'))
        with pytest.raises(InputFormatError, match='stromal'):
            factor.check_values(['basal', 'stromal'])

    def test_missing_value(self):
        factor = SampleFactor(name='CellType', levels=('basal', 'luminal'))
        with pytest.raises(InputFormatError):
            factor.check_values(['basal', None])

    def test_duplicate_levels(self):
        with pytest.raises(ValidationError):
            SampleFactor(name='CellType', levels=('basal', 'basal'))

    def test_no_levels(self):
        with pytest.raises(ValidationError):
            SampleFactor(name='CellType', levels=())


class TestSampleMetadata:
    """Tests for sample metadata."""

    def test_from_frame(self, sample_table):
        metadata = SampleMetadata.from_frame(sample_table, 'SampleName', ['CellType', 'Status'])

        assert metadata.samples[0] == 'MCL1.DG'
        assert [f.name for f in metadata.factors] == ['CellType', 'Status']
        assert metadata.factor('Status').levels == ('virgin', 'pregnant', 'lactating')
        assert isinstance(metadata.table['CellType'].dtype, pd.CategoricalDtype)

    def test_configured_levels_set_order(self, sample_table):
        metadata = SampleMetadata.from_frame(
            sample_table, 'SampleName', ['CellType', 'Status'],
            levels={'Status': ['lactating', 'pregnant', 'virgin']}
        )
        assert list(metadata.table['Status'].cat.categories) == ['lactating', 'pregnant', 'virgin']

    def test_configured_levels_reject_unknown(self, sample_table):
        with pytest.raises(InputFormatError):
            SampleMetadata.from_frame(
                sample_table, 'SampleName', ['Status'],
                levels={'Status': ['virgin', 'pregnant']}
            )

    def test_missing_column(self, sample_table):
        with pytest.raises(InputFormatError, match='Batch'):
            SampleMetadata.from_frame(sample_table, 'SampleName', ['Batch'])

    def test_duplicate_samples(self, sample_table):
        sample_table.loc[1, 'SampleName'] = 'MCL1.DG'
        with pytest.raises(InputFormatError, match='Duplicate'):
            SampleMetadata.from_frame(sample_table, 'SampleName', ['CellType'])

    def test_groups(self, sample_table):
        metadata = SampleMetadata.from_frame(sample_table, 'SampleName', ['CellType', 'Status'])
        groups = metadata.groups()

        assert groups['MCL1.DG'] == 'basal.virgin'
        assert groups['MCL1.DR'] == 'luminal.lactating'
        assert len(groups.cat.categories) == 6
        assert metadata.min_group_size() == 2

    def test_min_group_size_uneven(self, sample_table):
        metadata = SampleMetadata.from_frame(sample_table, 'SampleName', ['CellType'])
        assert metadata.min_group_size() == 6

    def test_no_factors(self, sample_table):
        metadata = SampleMetadata.from_frame(sample_table, 'SampleName', [])
        assert metadata.min_group_size() == 12

    def test_unknown_factor_name(self, sample_table):
        metadata = SampleMetadata.from_frame(sample_table, 'SampleName', ['CellType'])
        with pytest.raises(KeyError):
            metadata.factor('Status')

    def test_table_copied_on_construction(self, sample_table):
        table = sample_table.set_index('SampleName')
        metadata = SampleMetadata(table=table, factors=())

        table.loc['MCL1.DG', 'CellType'] = 'changed'

        assert metadata.table.loc['MCL1.DG', 'CellType'] == 'basal'
        assert metadata.table is not table
