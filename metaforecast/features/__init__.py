"""Feature extraction for feature-based forecast model selection.

Features are computed on a Box-Cox transformed, standardised copy of each
series so they are independent of the scale of the data.
"""

from metaforecast.features.extraction import (
    FEATURE_NAMES,
    FeatureExtractor,
    FeatureVector,
    guerrero_lambda,
    seasonal_strength,
)

__all__ = [
    "FEATURE_NAMES",
    "FeatureExtractor",
    "FeatureVector",
    "guerrero_lambda",
    "seasonal_strength",
]
