"""Data normalization and storage."""
