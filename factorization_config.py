"""
Typed configuration and resource budget for a factorization call.

FactorizationConfig is validated once at construction, so the stages and the
driver can read fields without re-checking them.
"""
import time
from dataclasses import dataclass, fields
from typing import Any, Mapping

from factorization_errors import ConfigurationError
from simd_operations import MAX_TABLE_PRIME
from small_primes import DEFAULT_TRIAL_BOUND


@dataclass(frozen=True)
class FactorizationConfig:
    """Tunables for the oracle, the stages and the overall budget."""
    trial_bound: int = DEFAULT_TRIAL_BOUND
    # Explicit strong-Fermat bases for n above the deterministic bounds;
    # None means the first `witness_count` primes.
    fermat_bases: tuple[int, ...] | None = None
    witness_count: int = 8
    rho_restarts: int = 8
    rho_max_iterations: int = 1 << 20
    rho_batch: int = 128
    pm1_bounds: tuple[int, ...] = (1_000, 10_000, 100_000)
    pm1_checkpoint: int = 64
    max_operations: int | None = None
    time_limit: float | None = None
    prove_primes: bool = True
    proof_operations: int = 1 << 18
    workers: int = 1
    seed: int = 0

    def __post_init__(self):
        if not 2 <= self.trial_bound <= MAX_TABLE_PRIME:
            raise ConfigurationError(f"trial_bound must be in [2, {MAX_TABLE_PRIME}]")
        if self.fermat_bases is not None:
            bases = tuple(int(b) for b in self.fermat_bases)
            if not bases or any(b < 2 for b in bases):
                raise ConfigurationError("fermat_bases must be a non-empty list of integers >= 2")
            object.__setattr__(self, 'fermat_bases', bases)
        if self.witness_count < 1:
            raise ConfigurationError("witness_count must be >= 1")
        for name in ('rho_restarts', 'rho_max_iterations', 'rho_batch', 'pm1_checkpoint', 'workers'):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1")
        bounds = tuple(int(b) for b in self.pm1_bounds)
        if any(b < 2 for b in bounds) or list(bounds) != sorted(bounds):
            raise ConfigurationError("pm1_bounds must be ascending integers >= 2")
        object.__setattr__(self, 'pm1_bounds', bounds)
        if self.max_operations is not None and self.max_operations < 0:
            raise ConfigurationError("max_operations must be >= 0")
        if self.time_limit is not None and self.time_limit <= 0:
            raise ConfigurationError("time_limit must be positive")
        if self.proof_operations < 0:
            raise ConfigurationError("proof_operations must be >= 0")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> 'FactorizationConfig':
        """Build a config from a plain dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {', '.join(unknown)}")
        values = dict(values)
        for key in ('fermat_bases', 'pm1_bounds'):
            if values.get(key) is not None:
                values[key] = tuple(values[key])
        return cls(**values)


DEFAULT_CONFIG = FactorizationConfig()


class OperationBudget:
    """
    Operation-count and wall-clock budget owned by one factorization call.

    Stages report the work they did; the driver charges it here and asks
    before every stage invocation whether anything is left.
    """

    def __init__(self, max_operations: int | None = None, time_limit: float | None = None):
        self.max_operations = max_operations
        self.time_limit = time_limit
        self.used = 0
        self._deadline = None if time_limit is None else time.monotonic() + time_limit

    @classmethod
    def from_config(cls, config: FactorizationConfig) -> 'OperationBudget':
        return cls(config.max_operations, config.time_limit)

    def __repr__(self) -> str:
        return (f"OperationBudget(used={self.used}, max_operations={self.max_operations}, "
                f"time_limit={self.time_limit})")

    def charge(self, work: int) -> None:
        self.used += work

    @property
    def remaining(self) -> int | None:
        """Operations left, or None when the count is unlimited."""
        if self.max_operations is None:
            return None
        return max(0, self.max_operations - self.used)

    def remaining_seconds(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def exhausted(self) -> bool:
        return self.remaining == 0 or self.expired()

    def allowance(self, cap: int) -> int:
        """How many operations the next stage may spend, at most cap."""
        remaining = self.remaining
        return cap if remaining is None else min(cap, remaining)
