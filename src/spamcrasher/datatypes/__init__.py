"""Identifier wrappers and the data classes passed through the decision pipeline."""
