"""
Job runners for the swap feature.
"""

from .consistency_check_job import find_invariant_violations, run_swap_consistency_check

__all__ = ["find_invariant_violations", "run_swap_consistency_check"]
