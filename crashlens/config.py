"""
Configuration objects
=====================

Plain dataclasses with defaults. The CLI fills them from argparse flags;
library users can construct them directly.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import os


@dataclass
class DataPaths:
    """Where the source tables live."""
    crash: str = "2012-2024_DATA_SA_Crash.csv"
    casualty: str = "2012-2024_DATA_SA_Casualty.csv"
    units: str = "2012-2024_DATA_SA_Units.csv"
    # Optional; the choropleth falls back to centroid circles without it
    boundaries: Optional[str] = "sa_lga_boundaries.geojson"

    @classmethod
    def from_dir(cls, data_dir: str, boundaries: Optional[str] = None) -> "DataPaths":
        """Default file names resolved inside `data_dir`."""
        d = cls()
        b = boundaries if boundaries is not None else d.boundaries
        return cls(
            crash=os.path.join(data_dir, d.crash),
            casualty=os.path.join(data_dir, d.casualty),
            units=os.path.join(data_dir, d.units),
            boundaries=os.path.join(data_dir, b) if b else None,
        )


@dataclass
class EngineConfig:
    """Tuning knobs for the filtering session."""
    # Records per cooperative chunk (filtering, aggregation)
    chunk_size: int = 2000
    # Point features per emitted batch
    marker_batch_size: int = 2000
    # Year bounds the CLI accepts; build_explorer widens them to the loaded years
    year_min: int = 2012
    year_max: int = 2024
