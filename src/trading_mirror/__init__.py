"""Trading Mirror - local mirror of Polymarket and Kalshi account state."""

__version__ = "0.1.0"
