"""
Bayesian resampling-and-bagging for match outcome forecasting.

Object attributes are not observed directly: they are estimated from noisy
historical measurements. The engine draws plausible realizations of those
estimates, trains one user-supplied model per realization, and scores new
matches on fresh draws, so predictions carry both estimation and model
uncertainty.
"""

from bayesbag.data import Match, ParticipantSlot, matches_from_frame
from bayesbag.bayesian import ObjectModel, Ensemble, fit_ensembles, register_family
from bayesbag.bagging import (
    BayesianBagger,
    PredictionRecord,
    build,
    predict,
    summarize_predictions,
)
from bayesbag.errors import BayesBagError, DataSufficiencyError, SchemaError

__version__ = "0.1.0"

__all__ = [
    "Match",
    "ParticipantSlot",
    "matches_from_frame",
    "ObjectModel",
    "Ensemble",
    "fit_ensembles",
    "register_family",
    "BayesianBagger",
    "PredictionRecord",
    "build",
    "predict",
    "summarize_predictions",
    "BayesBagError",
    "DataSufficiencyError",
    "SchemaError",
]
