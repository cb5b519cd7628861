"""Adapters to files and external libraries."""
