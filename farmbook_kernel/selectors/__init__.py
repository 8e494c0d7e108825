"""Read-only query selectors."""

from farmbook_kernel.selectors.base import BaseSelector
from farmbook_kernel.selectors.rule_selector import RuleSelector

__all__ = ["BaseSelector", "RuleSelector"]
