"""Configuration driven build and release pipeline for PowerShell modules."""

__version__ = "0.1.0"
