"""AGI News: daily AI newsletter pipeline."""

__version__ = "0.1.0"
