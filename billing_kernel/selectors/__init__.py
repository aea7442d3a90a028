"""Read-only query selectors."""

from billing_kernel.selectors.activity_selector import ActivityEvent, ActivitySelector
from billing_kernel.selectors.base import BaseSelector

__all__ = ["ActivityEvent", "ActivitySelector", "BaseSelector"]
