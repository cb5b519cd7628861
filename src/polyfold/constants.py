"""Default values shared across polyfold."""

from __future__ import annotations

# Cross-validation
DEFAULT_N_FOLDS = 5
RANDOM_STATE = 42
INSUFFICIENT_GROUPS_POLICIES = ("degrade", "reduce", "error")
DEFAULT_INSUFFICIENT_GROUPS_POLICY = "degrade"

# Raster processing
MEMORY_LIMIT_MB = 512
DEFAULT_BLOCK_SIZE = 256
MIN_BLOCK_SIZE = 32
NODATA_VALUE = -9999
CONFIDENCE_NODATA = -1

# Classifiers
DEFAULT_CLASSIFIER = "RF"
DEFAULT_METRIC = "kappa"

# Logging
DEFAULT_LOG_TAG = "Polyfold"
