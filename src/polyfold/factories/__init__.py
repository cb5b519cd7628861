"""Classifier construction."""
