"""Training sample extraction."""
