from dataclasses import dataclass, asdict
from typing import Optional

# -------------------------------------------------
# BANDS (Sentinel-2 L2A, 10 m / 20 m)
# -------------------------------------------------
SENTINEL_BANDS = ["B02", "B03", "B04", "B08", "B11", "B12"]
BAND_NAMES = {
    "B02": "blue",
    "B03": "green",
    "B04": "red",
    "B08": "nir",
    "B11": "swir1",
    "B12": "swir2",
}
BANDS = [BAND_NAMES[b] for b in SENTINEL_BANDS]

# -------------------------------------------------
# REFLECTANCE SCALING
# processing baseline 04.00+ adds BOA_ADD_OFFSET = -1000
# -------------------------------------------------
QUANTIFICATION_VALUE = 10000.0
BOA_ADD_OFFSET = -1000.0
DN_NODATA = 0
VALID_REFLECTANCE = (0.0, 1.0)

# -------------------------------------------------
# SAMPLES / OUTPUT
# -------------------------------------------------
LABEL_COLUMN = "class"
MISSING_CODE = -1
CHUNK_ROWS = 256

# band values are compared at this precision in training, predict and classify
FEATURE_DTYPE = "float32"


@dataclass(frozen=True)
class TreeParams:
    max_depth: Optional[int] = None
    min_samples_split: int = 2
    min_samples_leaf: int = 1
    min_impurity_gain: float = 1e-7
    n_jobs: int = 1

    def __post_init__(self):
        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0 or None, got {self.max_depth}")
        if self.min_samples_split < 2:
            raise ValueError(f"min_samples_split must be >= 2, got {self.min_samples_split}")
        if self.min_samples_leaf < 1:
            raise ValueError(f"min_samples_leaf must be >= 1, got {self.min_samples_leaf}")
        if self.min_impurity_gain < 0:
            raise ValueError(f"min_impurity_gain must be >= 0, got {self.min_impurity_gain}")
        if self.n_jobs < 1:
            raise ValueError(f"n_jobs must be >= 1, got {self.n_jobs}")

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, d):
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})
