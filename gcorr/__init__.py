"""Genetic-correlation matrix assembly from LDSC rg logs."""

__version__ = "0.1.0"
