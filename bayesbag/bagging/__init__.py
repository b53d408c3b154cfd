"""
Bagging module.

Provides:
- Transformations from object models to feature vectors
- Bagging engine (one trained model per posterior draw)
- Prediction engine (full model x test-draw grid)
"""

from bayesbag.bagging.transform import (
    MeansTransformation,
    QuantileTransformation,
    SampleTransformation,
    Transformation,
    get_transformation,
    transform_matches,
)
from bayesbag.bagging.engine import (
    BaggedModels,
    BayesianBagger,
    build,
)
from bayesbag.bagging.prediction import (
    PredictionRecord,
    predict,
    predict_matches,
    prediction_grid,
    predictions_frame,
    summarize_predictions,
)

__all__ = [
    # Transformations
    "MeansTransformation",
    "QuantileTransformation",
    "SampleTransformation",
    "Transformation",
    "get_transformation",
    "transform_matches",
    # Engine
    "BaggedModels",
    "BayesianBagger",
    "build",
    # Prediction
    "PredictionRecord",
    "predict",
    "predict_matches",
    "prediction_grid",
    "predictions_frame",
    "summarize_predictions",
]
