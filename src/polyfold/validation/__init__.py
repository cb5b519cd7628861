"""Grouped folds, cross-validation and accuracy statistics."""
