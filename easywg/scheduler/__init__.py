"""
Background subscription lifecycle processing.
"""

from easywg.scheduler.reconciler import SubscriptionReconciler, SweepResult

__all__ = ["SubscriptionReconciler", "SweepResult"]
