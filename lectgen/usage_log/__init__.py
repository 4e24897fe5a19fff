"""
Usage log: BillableActionRecords for AI generation, speech to text and PDF export.
"""

from .models import ActionStatus, ActionType, UsageRecord, estimate_cost
from .tracker import UsageTracker

__all__ = ['ActionStatus', 'ActionType', 'UsageRecord', 'UsageTracker', 'estimate_cost']
