"""
Practice Core

Adaptive practice scheduling and background job pipeline: problem selection,
Elo-style rating, spaced repetition mastery tracking, pool replenishment and
LLM-backed answer analysis.
"""

__version__ = "0.1.0"
