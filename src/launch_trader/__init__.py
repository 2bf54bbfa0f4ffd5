"""
Launch Trader.

An automated decision engine for newly launched tokens. It watches each new
asset for a short observation window, scores the order flow, buys through
an external execution service when the gates pass, and manages the exit of
every position it opens.
"""

__version__ = "0.1.0"
