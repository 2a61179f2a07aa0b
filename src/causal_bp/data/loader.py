"""
Data loading module for the SUPPORT2 dataset.
"""

import pandas as pd
from ucimlrepo import fetch_ucirepo
from typing import Optional
import logging

from ..config import DATASET_ID, EXPOSURE_COL, OUTCOME_COL


logger = logging.getLogger(__name__)


class SupportDataLoader:
    """Loads and provides access to the SUPPORT2 critically ill patients dataset."""

    def __init__(self, dataset_id: int = DATASET_ID):
        """
        Initialize the data loader.

        Args:
            dataset_id: UCI ML Repository dataset ID (default: 880 for SUPPORT2)
        """
        self.dataset_id = dataset_id
        self._raw_data = None
        self._metadata = None

    def load_data(self, remove_duplicates: bool = True) -> pd.DataFrame:
        """
        Load the SUPPORT2 dataset from UCI ML Repository.

        Args:
            remove_duplicates: Whether to remove fully duplicated rows

        Returns:
            Combined dataset with IDs, features and targets
        """
        logger.info(f"Loading SUPPORT2 dataset (ID: {self.dataset_id})")

        support_data = fetch_ucirepo(id=self.dataset_id)

        self._metadata = support_data.metadata

        # Targets (death, hospdead, ...) are shipped separately from the features
        frames = [
            frame for frame in (
                support_data.data.ids,
                support_data.data.features,
                support_data.data.targets,
            )
            if frame is not None
        ]
        df = pd.concat(frames, axis=1)
        df = df.loc[:, ~df.columns.duplicated()]

        if remove_duplicates:
            initial_size = len(df)
            df = df.drop_duplicates(keep="first").reset_index(drop=True)
            logger.info(f"Removed {initial_size - len(df)} duplicate rows")

        self._raw_data = df
        logger.info(f"Loaded dataset with {len(df)} observations and {len(df.columns)} columns")

        return df

    def get_metadata(self) -> Optional[dict]:
        """Get dataset metadata."""
        return self._metadata

    def describe_dataset(self) -> None:
        """Print dataset description and basic statistics."""
        if self._raw_data is None:
            logger.error("No data loaded. Call load_data() first.")
            return

        print("Dataset Overview:")
        print("=" * 50)
        print(f"Shape: {self._raw_data.shape}")

        if EXPOSURE_COL in self._raw_data.columns:
            bp = self._raw_data[EXPOSURE_COL]
            print(f"\nMean arterial blood pressure ({EXPOSURE_COL}):")
            print(f"  mean={bp.mean():.1f}, sd={bp.std():.1f}, min={bp.min():.0f}, max={bp.max():.0f}")

        if OUTCOME_COL in self._raw_data.columns:
            print("\nIn-hospital death distribution:")
            target_dist = self._raw_data[OUTCOME_COL].value_counts(normalize=True)
            for category, proportion in target_dist.items():
                print(f"  {category}: {proportion:.3f}")

        print("\nMissing data summary:")
        missing_summary = self._raw_data.isnull().sum()
        missing_pct = (missing_summary / len(self._raw_data)) * 100

        for col in self._raw_data.columns:
            if missing_pct[col] > 0:
                print(f"  {col}: {missing_pct[col]:.1f}%")
