"""
Data preprocessing module for the blood pressure analysis.
"""

import pandas as pd
from typing import Dict, List, Optional
import logging

from ..config import EXPOSURE_COL, OUTCOME_COL, COVARIATE_COLS, CATEGORICAL_COLS
from ..errors import DataError


logger = logging.getLogger(__name__)


class SupportPreprocessor:
    """Preprocesses the SUPPORT2 dataset into a complete-case analysis table."""

    def __init__(
        self,
        exposure_col: str = EXPOSURE_COL,
        outcome_col: str = OUTCOME_COL,
        covariate_cols: Optional[List[str]] = None,
        categorical_cols: Optional[List[str]] = None
    ):
        """
        Initialize the preprocessor.

        Args:
            exposure_col: Continuous exposure column (mean arterial blood pressure)
            outcome_col: Binary outcome column (in-hospital death)
            covariate_cols: Confounders to keep
            categorical_cols: Confounders to one-hot encode
        """
        self.exposure_col = exposure_col
        self.outcome_col = outcome_col
        self.covariate_cols = list(COVARIATE_COLS if covariate_cols is None else covariate_cols)
        self.categorical_cols = list(CATEGORICAL_COLS if categorical_cols is None else categorical_cols)

        self.sex_mapping = {'female': 1, 'male': 0}

    @staticmethod
    def clean_column_name(name: str) -> str:
        """Make a raw SUPPORT2 column name safe for design matrices ('num.co' -> 'num_co')."""
        return name.strip().replace('.', '_').replace(' ', '_')

    @staticmethod
    def complete_cases(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
        """
        Exclude units with a missing value in any of the given columns.

        Args:
            df: Dataset
            columns: Columns that must be observed

        Returns:
            Copy of the dataset restricted to complete cases
        """
        missing = [col for col in columns if col not in df.columns]
        if missing:
            raise DataError(f"Required columns not found: {missing}")

        mask = df[columns].notna().all(axis=1)
        n_dropped = int((~mask).sum())
        if n_dropped:
            per_column = df.loc[~mask, columns].isna().sum()
            per_column = per_column[per_column > 0].to_dict()
            logger.info(f"Excluded {n_dropped} incomplete units (missing by column: {per_column})")

        return df.loc[mask].copy()

    def preprocess(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Apply preprocessing to the raw dataset.

        Args:
            df: Raw SUPPORT2 dataset

        Returns:
            Complete-case dataset with numeric exposure, binary outcome and encoded confounders
        """
        logger.info("Starting data preprocessing")

        required = [self.exposure_col, self.outcome_col] + self.covariate_cols
        df_processed = self.complete_cases(df, required)
        df_processed = df_processed[required]

        df_processed[self.exposure_col] = df_processed[self.exposure_col].astype(float)

        # A recorded mean arterial pressure of 0 marks an implausible record, not an exposure level
        implausible = df_processed[self.exposure_col] <= 0
        if implausible.any():
            logger.warning(
                f"Excluded {int(implausible.sum())} units with non-positive {self.exposure_col}"
            )
            df_processed = df_processed.loc[~implausible].copy()

        df_processed[self.outcome_col] = df_processed[self.outcome_col].astype(int)

        outcome_values = set(df_processed[self.outcome_col].unique())
        if not outcome_values <= {0, 1}:
            raise DataError(f"Outcome '{self.outcome_col}' must be binary, found {sorted(outcome_values)}")

        # Process sex (1 = Female, 0 = Male)
        if 'sex' in df_processed.columns and not pd.api.types.is_numeric_dtype(df_processed['sex']):
            df_processed['sex'] = df_processed['sex'].str.strip().str.lower().map(self.sex_mapping)
            if df_processed['sex'].isna().any():
                raise DataError("Unrecognised values in 'sex'")
            df_processed['sex'] = df_processed['sex'].astype(int)

        # Create dummy variables for categorical confounders
        categorical = [col for col in self.categorical_cols if col in df_processed.columns]
        for col in categorical:
            df_processed[col] = df_processed[col].astype(str).str.strip().str.lower()
        df_processed = pd.get_dummies(
            df_processed, columns=categorical, drop_first=True, dtype=int
        )

        df_processed.columns = [self.clean_column_name(col) for col in df_processed.columns]
        df_processed = df_processed.reset_index(drop=True)

        logger.info(f"Preprocessing complete. Final dataset shape: {df_processed.shape}")
        return df_processed

    def get_covariate_columns(self, df: pd.DataFrame) -> List[str]:
        """Return every processed column that is neither exposure nor outcome."""
        excluded = {self.clean_column_name(self.exposure_col), self.clean_column_name(self.outcome_col)}
        return [col for col in df.columns if col not in excluded]

    def get_feature_groups(self, df: pd.DataFrame) -> Dict[str, List[str]]:
        """
        Categorize confounders into groups for reporting.

        Args:
            df: Preprocessed dataset

        Returns:
            Dictionary mapping feature group names to column lists
        """
        demographics = [col for col in ['age', 'sex'] if col in df.columns]
        demographics += [col for col in df.columns if col.startswith('race_')]

        comorbidities = [col for col in ['num_co', 'diabetes', 'dementia'] if col in df.columns]
        comorbidities += [col for col in df.columns if col.startswith('ca_')]

        physiology = [
            col for col in ['scoma', 'hrt', 'resp', 'temp', 'sod', 'crea']
            if col in df.columns
        ]

        diagnoses = [col for col in df.columns if col.startswith('dzgroup_')]

        return {
            'demographics': demographics,
            'comorbidities': comorbidities,
            'physiology': physiology,
            'diagnoses': diagnoses
        }

    def summarize_exposure(self, df: pd.DataFrame) -> Dict[str, float]:
        """Summary statistics of the exposure and outcome in the analysis table."""
        exposure = df[self.exposure_col]
        return {
            'n_units': int(len(df)),
            'exposure_mean': float(exposure.mean()),
            'exposure_std': float(exposure.std()),
            'exposure_min': float(exposure.min()),
            'exposure_max': float(exposure.max()),
            'outcome_rate': float(df[self.outcome_col].mean())
        }
