"""
Vectorized and JIT-compiled kernels for the factorization engine.

This module contains the NumPy and Numba code paths used by trial division
and by the small-prime table.

OPTIMIZATION TARGETS:
1. Small-prime sieve: NumPy slice assignment (no Python inner loop)
2. Table divisibility for word-sized n: one vectorized NumPy modulo
3. Table divisibility for big n: Numba JIT kernel over 30-bit limbs,
   one pass per prime instead of one bignum division per prime
"""

import math
from typing import List

import numpy as np
from numba import njit


# Limb width used when handing big integers to the JIT kernel. Table primes
# stay below 2^31, so (r << 30) | limb never leaves int64.
LIMB_BITS: int = 30
_LIMB_MASK: int = (1 << LIMB_BITS) - 1

# Largest n handled by the plain NumPy path (n % primes in int64).
_NUMPY_DIRECT_LIMIT: int = 1 << 62

MAX_TABLE_PRIME: int = (1 << 31) - 1


# ============================================================================
# PART 1: SIEVE OF ERATOSTHENES (NumPy)
# ============================================================================

def sieve_primes(limit: int) -> np.ndarray:
    """
    Sieve of Eratosthenes up to and including limit.

    Args:
        limit: Inclusive upper bound

    Returns:
        Ascending int64 array of all primes <= limit
    """
    if limit < 2:
        return np.empty(0, dtype=np.int64)

    sieve = np.ones(limit + 1, dtype=np.bool_)
    sieve[:2] = False
    sieve[4::2] = False

    for i in range(3, math.isqrt(limit) + 1, 2):
        if sieve[i]:
            sieve[i * i::2 * i] = False

    return np.flatnonzero(sieve).astype(np.int64)


# ============================================================================
# PART 2: TABLE RESIDUES (NumPy / Numba JIT)
# ============================================================================

@njit
def _residues_mod_primes(limbs: np.ndarray, primes: np.ndarray) -> np.ndarray:
    """
    JIT-compiled Horner evaluation of n mod p for every p in primes.

    Args:
        limbs: 30-bit limbs of n, most significant first (int64)
        primes: Table primes, each below 2^31 (int64)

    Returns:
        int64 array of n mod p, aligned with primes
    """
    out = np.empty(primes.shape[0], dtype=np.int64)
    for i in range(primes.shape[0]):
        p = primes[i]
        r = 0
        for j in range(limbs.shape[0]):
            r = ((r << 30) | limbs[j]) % p
        out[i] = r
    return out


def int_to_limbs(n: int) -> np.ndarray:
    """Split a non-negative integer into 30-bit limbs, most significant first."""
    if n < 0:
        raise ValueError("n must be non-negative")
    limbs: List[int] = []
    while n:
        limbs.append(n & _LIMB_MASK)
        n >>= LIMB_BITS
    if not limbs:
        limbs.append(0)
    limbs.reverse()
    return np.asarray(limbs, dtype=np.int64)


def residues_mod_primes(n: int, primes: np.ndarray) -> np.ndarray:
    """
    Compute n mod p for a whole array of primes.

    Word-sized n uses a single vectorized NumPy modulo; larger n goes through
    the JIT limb kernel.

    Args:
        n: Non-negative integer of any size
        primes: int64 array of primes below 2^31

    Returns:
        int64 array of residues aligned with primes
    """
    if primes.shape[0] == 0:
        return np.empty(0, dtype=np.int64)
    n = int(n)
    if n < _NUMPY_DIRECT_LIMIT:
        return np.int64(n) % primes
    return _residues_mod_primes(int_to_limbs(n), primes)


def dividing_primes(n: int, primes: np.ndarray) -> List[int]:
    """
    Return the primes from the array that divide n, ascending.

    Args:
        n: Integer to test (non-negative)
        primes: Ascending int64 array of primes

    Returns:
        List of Python ints p with n % p == 0
    """
    residues = residues_mod_primes(n, primes)
    return [int(p) for p in primes[residues == 0]]


__all__: List[str] = [
    'LIMB_BITS',
    'MAX_TABLE_PRIME',
    'sieve_primes',
    'int_to_limbs',
    'residues_mod_primes',
    'dividing_primes',
]
