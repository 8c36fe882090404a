"""Per-pixel analysis components."""

from pixeltrend.analysis.harmonic import fit, predict
from pixeltrend.analysis.segmented import predict_feathered, predict_segmented
from pixeltrend.analysis.trajectory import convert_to_loss_gain

__all__ = [
    "convert_to_loss_gain",
    "fit",
    "predict",
    "predict_feathered",
    "predict_segmented",
]
