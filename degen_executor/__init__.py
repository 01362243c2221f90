"""Reward execution engine for degen-mode jackpot payouts."""

__version__ = "0.4.0"
