"""Snarkels - quiz rooms and prediction-market sync backend."""

__version__ = "0.1.0"
