"""
Crypto Intelligence Dashboard.

Synthetic cryptocurrency market monitor. The framework generates mock
market batches, annotates each coin with heuristic breakout, inflow and
fundamental scores, derives ranked dashboard views, and keeps itself
running with a self-healing health monitor.
"""

__version__ = "0.1.0"
