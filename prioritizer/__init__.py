"""
prioritizer
Outcome-driven task prioritization.

A Generator partitions and orders tasks against an outcome; a cheaper
Evaluator critiques low-confidence candidates; a bounded loop refines
until the critique passes or the iteration budget runs out.
"""

__version__ = "1.0.0a0"
