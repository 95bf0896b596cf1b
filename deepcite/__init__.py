"""Iterative, human-gated research pipeline."""
