"""
Decomposition stages tried on a composite residue, in order:

1. Trial division by the small-prime table (strips whole prime powers)
2. Perfect power detection (n = r^k)
3. Pollard's Rho, Brent's variant, with batched gcd and restarts
4. Pollard's p-1 with an escalating bound schedule

Every stage is a pure function run(n, limit) -> StageOutcome. `limit` caps
the operations the stage may spend and `work` in the outcome reports what it
actually spent; the driver owns the budget and does the accounting. A stage
that finds nothing says so with NoFactorFound. That is never a statement
about primality.
"""
import logging
import random
from dataclasses import dataclass
from functools import partial
from typing import Callable, Union

import gmpy2
from gmpy2 import mpz

from factorization_config import DEFAULT_CONFIG, FactorizationConfig
from modular_arithmetic import ModulusContext
from simd_operations import dividing_primes
from small_primes import SmallPrimeTable, small_prime_table

logger = logging.getLogger(__name__)


# ============================================================================
# STAGE OUTCOMES
# ============================================================================

@dataclass(frozen=True)
class FactorSplit:
    """n = divisor * cofactor with 1 < divisor < n."""
    divisor: int
    cofactor: int
    work: int = 0


@dataclass(frozen=True)
class PrimePowersStripped:
    """Table primes removed from n with their full exponents."""
    prime_powers: tuple[tuple[int, int], ...]
    cofactor: int
    work: int = 0


@dataclass(frozen=True)
class NoFactorFound:
    reason: str
    work: int = 0


StageOutcome = Union[FactorSplit, PrimePowersStripped, NoFactorFound]


@dataclass(frozen=True)
class FactoringStage:
    name: str
    run: Callable[[int, int], StageOutcome]


# ============================================================================
# TRIAL DIVISION
# ============================================================================

def trial_division(n: int, limit: int, table: SmallPrimeTable | None = None) -> StageOutcome:
    """
    Strip every table prime dividing n.

    The divisibility scan covers the whole table slice at once (see
    simd_operations.residues_mod_primes); exponents come from gmpy2.remove.

    Args:
        n: Integer > 1
        limit: Maximum number of table primes to consult
        table: Small-prime table, the default bound when omitted

    Returns:
        PrimePowersStripped, or NoFactorFound when no consulted prime divides n
    """
    if table is None:
        table = small_prime_table()
    primes = table.array[:max(0, limit)]
    work = int(primes.shape[0])

    divisors = dividing_primes(n, primes)
    if not divisors:
        return NoFactorFound("no table prime divides n", work)

    m = mpz(n)
    stripped = []
    for p in divisors:
        m, e = gmpy2.remove(m, p)
        stripped.append((p, int(e)))
    return PrimePowersStripped(tuple(stripped), int(m), work)


# ============================================================================
# PERFECT POWERS
# ============================================================================

def perfect_power(n: int, limit: int) -> StageOutcome:
    """Split n = r^k by testing every prime exponent k <= log2(n)."""
    n = mpz(n)
    bits = n.bit_length()
    work = 0
    k = 2
    while k <= bits and work < limit:
        work += 1
        root, exact = gmpy2.iroot(n, k)
        if exact:
            root = int(root)
            return FactorSplit(root, int(n) // root, work)
        k = int(gmpy2.next_prime(k))
    return NoFactorFound("not a perfect power", work)


# ============================================================================
# POLLARD RHO (BRENT)
# ============================================================================

def _brent_cycle(n: mpz, y: mpz, c: mpz, max_steps: int, batch: int) -> tuple[int | None, int]:
    """
    One Brent cycle-detection run of x -> x^2 + c (mod n).

    Returns:
        (divisor or None, steps). None means the step cap ran out or the
        cycle closed without separating the factors (gcd stuck at n).
    """
    steps = 0
    g = mpz(1)
    q = mpz(1)
    r = 1
    x = ys = y
    m = 0

    while g == 1:
        x = y
        # move ahead r steps
        for _ in range(r):
            if steps >= max_steps:
                return None, steps
            y = (y * y + c) % n
            steps += 1
        k = 0
        # batch gcd
        while k < r and g == 1:
            ys = y
            m = min(batch, r - k, max_steps - steps)
            if m <= 0:
                return None, steps
            for _ in range(m):
                y = (y * y + c) % n
                q = q * abs(x - y) % n
            steps += m
            g = gmpy2.gcd(q, n)
            k += m
        r *= 2

    if g == n:
        # the batch product hit 0 mod n; replay it one step at a time
        for _ in range(m):
            ys = (ys * ys + c) % n
            g = gmpy2.gcd(abs(x - ys), n)
            if g > 1:
                break

    if g == n:
        return None, steps
    return int(g), steps


def pollard_rho_brent(n: int, limit: int, restarts: int = 8, max_iterations: int = 1 << 20,
                      batch: int = 128, seed: int = 0) -> StageOutcome:
    """
    Brent's Pollard Rho with restarts.

    Each attempt draws (c, x0) from a generator seeded by (seed, n, attempt),
    so runs are reproducible. c avoids 0 and n-2, whose maps x^2 and x^2 - 2
    degenerate.

    Args:
        n: Composite integer > 3
        limit: Iteration cap across all attempts
        restarts: Number of attempts
        max_iterations: Iteration cap per attempt
        batch: Steps per gcd
        seed: Base seed

    Returns:
        FactorSplit, or NoFactorFound when every attempt failed
    """
    if n % 2 == 0:
        return FactorSplit(2, n // 2, 1)

    m = mpz(n)
    work = 0
    for attempt in range(restarts):
        if work >= limit:
            break
        rng = random.Random(seed ^ (n << 1) ^ attempt)
        c = mpz(rng.randrange(1, n - 2))
        y = mpz(rng.randrange(0, n))

        divisor, steps = _brent_cycle(m, y, c, min(max_iterations, limit - work), batch)
        work += steps
        if divisor is not None:
            logger.debug("rho split %d after %d steps (attempt %d)", divisor, work, attempt + 1)
            return FactorSplit(divisor, n // divisor, work)
        logger.debug("rho attempt %d on %d failed after %d steps, restarting", attempt + 1, n, steps)

    return NoFactorFound("pollard rho found no divisor", work)


# ============================================================================
# POLLARD P-1
# ============================================================================

def pollard_pm1(n: int, limit: int, bounds: tuple[int, ...] = (1_000, 10_000, 100_000),
                checkpoint: int = 64) -> StageOutcome:
    """
    Pollard's p-1 with stage-1 exponent B!.

    a starts at 2 and is raised to k for k = 2, 3, ..., so after step k it
    equals 2^(k!). The bounds are an escalation schedule: each one is a gcd
    checkpoint and the last is the ceiling. Between bounds a gcd is taken
    every `checkpoint` steps. If the gcd reaches n, the last block is
    replayed one step at a time; if that still lands on n every prime of n
    is smooth together and larger bounds cannot separate them.

    Args:
        n: Odd composite integer
        limit: Maximum number of exponentiation steps
        bounds: Ascending smoothness bounds
        checkpoint: Steps between gcd checks

    Returns:
        FactorSplit, or NoFactorFound
    """
    if n % 2 == 0:
        return FactorSplit(2, n // 2, 1)

    ctx = ModulusContext(n)
    a = mpz(2)
    k = 2
    work = 0
    for bound in bounds:
        if k > bound:
            continue
        logger.debug("p-1 on %d with bound %d", n, bound)
        while k <= bound:
            if work >= limit:
                return NoFactorFound("p-1 step limit reached", work)
            saved_a, saved_k = a, k
            end = min(k + checkpoint, bound + 1, k + (limit - work))
            for j in range(k, end):
                a = ctx.powmod(a, j)
            work += end - k
            k = end

            g = ctx.gcd(a - 1)
            if g == 1:
                continue
            if g < n:
                return FactorSplit(int(g), n // int(g), work)

            a = saved_a
            for j in range(saved_k, end):
                a = ctx.powmod(a, j)
                g = ctx.gcd(a - 1)
                if g == 1:
                    continue
                if g < n:
                    return FactorSplit(int(g), n // int(g), work)
                break
            logger.debug("p-1 on %d stalled at bound %d", n, bound)
            return NoFactorFound("every prime of n is smooth at the same step", work)

    return NoFactorFound("p-1 bounds exhausted", work)


def build_stages(config: FactorizationConfig = DEFAULT_CONFIG,
                 table: SmallPrimeTable | None = None) -> tuple[FactoringStage, ...]:
    """Ordered stage list for a configuration."""
    if table is None:
        table = small_prime_table(config.trial_bound)
    return (
        FactoringStage("trial-division", partial(trial_division, table=table)),
        FactoringStage("perfect-power", perfect_power),
        FactoringStage("pollard-rho", partial(
            pollard_rho_brent,
            restarts=config.rho_restarts,
            max_iterations=config.rho_max_iterations,
            batch=config.rho_batch,
            seed=config.seed,
        )),
        FactoringStage("pollard-p-1", partial(
            pollard_pm1,
            bounds=config.pm1_bounds,
            checkpoint=config.pm1_checkpoint,
        )),
    )
