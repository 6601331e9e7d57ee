from double_restraint.startup import bootstrap
from double_restraint.common.errors import CapacityExceededError, RestraintError, ThrottledError
from double_restraint.limiter import (
    ConcurrencyLimiter,
    LocalConcurrencyLimiter,
    RedisConcurrencyLimiter,
    Slot,
    build_limiter,
)
from double_restraint.restraint import DoubleRestraint, PoolConfig

__all__ = [
    "CapacityExceededError",
    "ConcurrencyLimiter",
    "DoubleRestraint",
    "LocalConcurrencyLimiter",
    "PoolConfig",
    "RedisConcurrencyLimiter",
    "RestraintError",
    "Slot",
    "ThrottledError",
    "bootstrap",
    "build_limiter",
]
