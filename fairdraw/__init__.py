"""Verifiable commit-reveal prize draws and leaderboard scoring for contests."""

__version__ = "0.1.0"
