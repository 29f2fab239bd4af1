"""
Model pricing catalog and usage accounting.
"""

from .model_registry import ModelRegistry, ModelInfo, ModelPricing
from .cost_tracker import CostTracker, UsageRecord, UsageStats

__all__ = [
    "ModelRegistry",
    "ModelInfo",
    "ModelPricing",
    "CostTracker",
    "UsageRecord",
    "UsageStats",
]
