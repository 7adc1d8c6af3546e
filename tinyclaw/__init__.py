"""
TinyClaw - route chat channels through one sequential AI worker.
"""

__version__ = "0.1.0"
__logo__ = "🦞"
