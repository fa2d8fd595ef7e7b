"""
PM (Project Management) module for the coordinator.

Holds features, their PRDs, tasks and plans, and persists them under the
state directory.
"""

from coordinator.pm.models import Feature, Plan, Task
from coordinator.pm.features import FeatureStore, write_feature_markdown

__all__ = [
    "Feature",
    "Plan",
    "Task",
    "FeatureStore",
    "write_feature_markdown",
]
