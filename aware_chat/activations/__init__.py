"""Activation capture and preprocessing."""

from .collector import LastTokenActivationCollector
from .preprocessor import ActivationPreprocessor

__all__ = ["LastTokenActivationCollector", "ActivationPreprocessor"]
