"""
Business policy and engine configuration.
"""

from .config_loader import EtlConfigLoader, load_config
from .policy import BusinessPolicy, EtlConfig, PriceRange, SpendSegment

__all__ = [
    "BusinessPolicy",
    "EtlConfig",
    "EtlConfigLoader",
    "PriceRange",
    "SpendSegment",
    "load_config",
]
