"""Persistence repositories for the learning-path engine."""

from .learning_paths import LearningPathRepository, learning_paths

__all__ = ["LearningPathRepository", "learning_paths"]
