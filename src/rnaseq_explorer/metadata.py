"""Sample metadata with categorical factors fixed at load time."""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
from pydantic import BaseModel, ConfigDict, field_validator

from .validation import InputFormatError


logger = logging.getLogger(__name__)


class SampleFactor(BaseModel):
    """A categorical sample attribute and its allowed levels, in display order."""

    model_config = ConfigDict(frozen=True)

    name: str
    levels: Tuple[str, ...]

    @field_validator('levels')
    @classmethod
    def unique_levels(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if len(v) == 0:
            raise ValueError("a factor needs at least one level")
        if len(set(v)) != len(v):
            raise ValueError(f"duplicate levels: {v}")
        return v

    def check_values(self, values: Sequence) -> pd.Categorical:
        """Convert ``values`` to a categorical, rejecting unknown or missing levels."""
        values = pd.Series(values, dtype=object)
        if values.isna().any():
            raise InputFormatError(f"Factor '{self.name}' has missing values")
        values = values.astype(str).str.strip()
        unknown = sorted(set(values) - set(self.levels))
        if unknown:
            raise InputFormatError(
                f"Factor '{self.name}' has values outside its levels "
                f"{list(self.levels)}: {', '.join(unknown)}"
            )
        return pd.Categorical(values, categories=list(self.levels))

    @classmethod
    def from_values(cls, name: str, values: Sequence) -> "SampleFactor":
        """Infer levels from ``values`` in order of first appearance."""
        values = pd.Series(values, dtype=object)
        if values.isna().any():
            raise InputFormatError(f"Factor '{name}' has missing values")
        levels = tuple(pd.unique(values.astype(str).str.strip()))
        return cls(name=name, levels=levels)


class SampleMetadata(BaseModel):
    """One row per sample, indexed by sample name, with categorical factor columns."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    table: pd.DataFrame
    factors: Tuple[SampleFactor, ...]

    @field_validator('table')
    @classmethod
    def copy_table(cls, v: pd.DataFrame) -> pd.DataFrame:
        return v.copy()

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        sample_column: str,
        factor_columns: Sequence[str],
        levels: Optional[Dict[str, List[str]]] = None
    ) -> "SampleMetadata":
        """
        Build sample metadata from a raw sample table.

        Args:
            df: Sample table, one row per sample in count-table order
            sample_column: Column with sample identifiers
            factor_columns: Columns to treat as categorical factors
            levels: Allowed levels per factor; inferred from the data if absent

        Returns:
            SampleMetadata indexed by sample name
        """
        levels = levels or {}
        missing = [c for c in [sample_column, *factor_columns] if c not in df.columns]
        if missing:
            raise InputFormatError(f"Sample table lacks column(s): {', '.join(missing)}")

        table = df.set_index(sample_column, drop=True).copy()
        table.index = table.index.astype(str)
        if table.index.duplicated().any():
            dupes = table.index[table.index.duplicated()].unique().tolist()
            raise InputFormatError(f"Duplicate sample identifiers: {', '.join(dupes)}")

        factors = []
        for column in factor_columns:
            if column in levels:
                factor = SampleFactor(name=column, levels=tuple(levels[column]))
            else:
                factor = SampleFactor.from_values(column, table[column])
            table[column] = factor.check_values(table[column].tolist())
            factors.append(factor)
            logger.info(f"Factor {column}: {', '.join(factor.levels)}")

        return cls(table=table, factors=tuple(factors))

    @property
    def samples(self) -> List[str]:
        return self.table.index.tolist()

    def factor(self, name: str) -> SampleFactor:
        for f in self.factors:
            if f.name == name:
                return f
        raise KeyError(name)

    def groups(self) -> pd.Series:
        """Experimental group of each sample: the factor levels joined with '.'."""
        if not self.factors:
            return pd.Series("all", index=self.table.index, name="group")
        labels = self.table[[f.name for f in self.factors]].astype(str).agg('.'.join, axis=1)
        return pd.Series(
            pd.Categorical(labels, categories=list(pd.unique(labels))),
            index=self.table.index,
            name="group"
        )

    def min_group_size(self) -> int:
        """Number of samples in the smallest experimental group."""
        return int(self.groups().value_counts().min())
