"""Risk-gated trade decision engine for Solana tokens."""

__version__ = "0.1.0"
