"""
Precomputed small-prime table shared by the primality oracle and trial division.

Tables are immutable and memoized per bound, so every factorization call in
the process reuses the same sieve.
"""
import bisect
from dataclasses import dataclass, field
from functools import lru_cache

import numpy as np

from simd_operations import MAX_TABLE_PRIME, dividing_primes, sieve_primes

DEFAULT_TRIAL_BOUND = 50_000


@dataclass(frozen=True, eq=False)
class SmallPrimeTable:
    """Ascending primes up to ``bound``, as a tuple and as an int64 array."""
    bound: int
    primes: tuple[int, ...]
    array: np.ndarray = field(repr=False)

    def __len__(self) -> int:
        return len(self.primes)

    def __contains__(self, n: int) -> bool:
        if n > self.bound or n < 2:
            return False
        i = bisect.bisect_left(self.primes, n)
        return i < len(self.primes) and self.primes[i] == n

    @property
    def proven_limit(self) -> int:
        """Every n below this value with no table divisor is prime."""
        return (self.bound + 1) ** 2

    def primes_up_to(self, limit: int) -> np.ndarray:
        """Slice of the array holding primes <= limit."""
        return self.array[:bisect.bisect_right(self.primes, limit)]

    def dividing(self, n: int, limit: int | None = None) -> list[int]:
        """Table primes (optionally only those <= limit) that divide n."""
        primes = self.array if limit is None else self.primes_up_to(limit)
        return dividing_primes(n, primes)


@lru_cache(maxsize=8)
def small_prime_table(bound: int = DEFAULT_TRIAL_BOUND) -> SmallPrimeTable:
    """Get the memoized prime table for bound (sieved on first use)."""
    if bound < 2 or bound > MAX_TABLE_PRIME:
        raise ValueError(f"table bound must be in [2, {MAX_TABLE_PRIME}], got {bound}")
    array = sieve_primes(bound)
    array.setflags(write=False)
    return SmallPrimeTable(bound=bound, primes=tuple(int(p) for p in array), array=array)


def get_small_primes(bound: int = DEFAULT_TRIAL_BOUND) -> tuple[int, ...]:
    """Get pre-computed small primes up to bound (memoized)."""
    return small_prime_table(bound).primes
