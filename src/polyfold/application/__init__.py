"""Application layer: end-to-end workflows."""
