"""
Claim filter and claim-to-header mapper.
"""

from .matcher import ClaimFilterRule, ClaimMatcher, build_filter_rules, parse_filter_value
from .mapper import ClaimMapper

__all__ = [
    "ClaimFilterRule",
    "ClaimMapper",
    "ClaimMatcher",
    "build_filter_rules",
    "parse_filter_value",
]
