"""solcov: source instrumentation and coverage aggregation for Solidity."""

__version__ = "0.1.0"
