"""
Convergent - declarative resource convergence.

Loads a plan of desired-state resources (files, rendered templates,
services), orders it, and converges the host towards it idempotently.
"""

__version__ = "0.1.0"
