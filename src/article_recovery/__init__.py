"""Review → fix → re-review recovery loop for generated markdown articles."""

__version__ = "0.1.0"
