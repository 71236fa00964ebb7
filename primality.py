"""
Primality testing and certificates.

Two compositeness testers (strong Fermat / Miller-Rabin and strong Lucas with
Selfridge parameters) feed one oracle that returns a PrimalityCertificate.
The certificate verdict is a closed union:

- CompositeWitnessed: a concrete witness proves n composite
- ProbablyPrime: every test passed, nothing is proven
- DefinitelyPrime: deterministic evidence, carried in the proof field

DETERMINISTIC BOUNDS:
- n < 2^64: Sinclair's seven bases; BPSW is also verified exhaustively here
- n < 3317044064679887385961981: the first 13 primes as bases
  (Sorenson & Webster, 2015)
Above these bounds the oracle answers ProbablyPrime; only a Pocklington proof
(see certification.py) may upgrade that.
"""
import enum
import logging
import math
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Union

import gmpy2
from gmpy2 import mpz

from factorization_config import DEFAULT_CONFIG, FactorizationConfig
from factorization_errors import InvalidInput
from modular_arithmetic import ModulusContext, two_adic_split
from small_primes import get_small_primes, small_prime_table

logger = logging.getLogger(__name__)

SINCLAIR_BASES: tuple[int, ...] = (2, 325, 9375, 28178, 450775, 9780504, 1795265022)
SINCLAIR_BOUND: int = 1 << 64

FIRST_13_PRIME_BASES: tuple[int, ...] = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41)
SORENSON_WEBSTER_BOUND: int = 3317044064679887385961981

# Largest value for which the oracle alone may answer DefinitelyPrime.
DETERMINISTIC_BOUND: int = SORENSON_WEBSTER_BOUND


class TestOutcome(enum.Enum):
    """Result of a single compositeness test."""
    COMPOSITE = "composite"
    PROBABLY_PRIME = "probably-prime"

    # keep pytest from collecting this enum as a test class
    __test__ = False


# ============================================================================
# VERDICTS AND PROOFS
# ============================================================================

@dataclass(frozen=True)
class LucasParameters:
    """Selfridge parameters of the strong Lucas test."""
    D: int
    P: int
    Q: int


@dataclass(frozen=True)
class SmallPrimeProof:
    """n is in the small-prime table, or below (bound+1)^2 with no table divisor."""
    bound: int
    kind = "trial-division"


@dataclass(frozen=True)
class DeterministicWitnessProof:
    """Every base of a set proven exhaustive below `bound` passed."""
    bases: tuple[int, ...]
    bound: int
    kind = "deterministic-miller-rabin"


@dataclass(frozen=True)
class PocklingtonFactor:
    """One prime q of the factored part of n-1 with its witness base."""
    prime: int
    exponent: int
    base: int
    certificate: 'PrimalityCertificate'


@dataclass(frozen=True)
class PocklingtonProof:
    """
    Pocklington-Lehmer proof: n - 1 = F * cofactor with F^2 > n fully factored,
    and for each prime q of F a base a with a^(n-1) = 1 and
    gcd(a^((n-1)/q) - 1, n) = 1.
    """
    factors: tuple[PocklingtonFactor, ...]
    cofactor: int
    kind = "pocklington"

    @property
    def factored_part(self) -> int:
        return math.prod(f.prime ** f.exponent for f in self.factors)


Proof = Union[SmallPrimeProof, DeterministicWitnessProof, PocklingtonProof]


@dataclass(frozen=True)
class CompositeWitnessed:
    """
    n is composite. For 'even', 'divisor', 'perfect-square' and
    'lucas-discriminant' the witness divides n; for 'strong-fermat' and
    'fermat' it is the base; for 'strong-lucas' it is the discriminant D.
    """
    witness: int
    method: str


@dataclass(frozen=True)
class ProbablyPrime:
    pass


@dataclass(frozen=True)
class DefinitelyPrime:
    proof: Proof


Verdict = Union[CompositeWitnessed, ProbablyPrime, DefinitelyPrime]


@dataclass(frozen=True)
class PrimalityCertificate:
    """Evidence gathered about n and the verdict it supports."""
    n: int
    verdict: Verdict
    fermat_bases: tuple[int, ...] = ()
    lucas: LucasParameters | None = None
    trial_bound: int = 0

    @property
    def is_prime(self) -> bool:
        return not isinstance(self.verdict, CompositeWitnessed)

    @property
    def is_proven(self) -> bool:
        return isinstance(self.verdict, DefinitelyPrime)

    @property
    def is_composite(self) -> bool:
        return isinstance(self.verdict, CompositeWitnessed)

    @property
    def strength(self) -> int:
        """0 composite, 1 probable, 2 proven; used when merging duplicates."""
        if self.is_composite:
            return 0
        return 2 if self.is_proven else 1

    @property
    def method(self) -> str:
        verdict = self.verdict
        if isinstance(verdict, CompositeWitnessed):
            return f"composite:{verdict.method}"
        if isinstance(verdict, DefinitelyPrime):
            return verdict.proof.kind
        return "bpsw"

    def with_proof(self, proof: Proof) -> 'PrimalityCertificate':
        return replace(self, verdict=DefinitelyPrime(proof))

    def with_witness(self, witness: int, method: str) -> 'PrimalityCertificate':
        return replace(self, verdict=CompositeWitnessed(int(witness), method))


# ============================================================================
# WITNESS-BASED COMPOSITENESS TESTER
# ============================================================================

def strong_fermat_test(n: int, a: int, ctx: ModulusContext | None = None) -> TestOutcome:
    """
    Strong Fermat (Miller-Rabin) test of n for a single base.

    Args:
        n: Odd integer >= 5
        a: Base with 1 < a < n - 1
        ctx: Optional context for modulus n, reused across bases

    Returns:
        TestOutcome.COMPOSITE if a proves n composite, else PROBABLY_PRIME
    """
    if n < 5 or n % 2 == 0:
        raise ValueError(f"n must be odd and >= 5, got {n}")
    if not 1 < a < n - 1:
        raise ValueError(f"base must satisfy 1 < a < n - 1, got {a}")
    if ctx is None:
        ctx = ModulusContext(n)

    s, d = two_adic_split(n - 1)
    x = ctx.powmod(a, d)
    if x == 1 or x == ctx.minus_one:
        return TestOutcome.PROBABLY_PRIME
    for _ in range(s - 1):
        x = ctx.sqrmod(x)
        if x == ctx.minus_one:
            return TestOutcome.PROBABLY_PRIME
        if x == 1:
            # nontrivial square root of 1
            break
    return TestOutcome.COMPOSITE


def witness_bases(n: int, config: FactorizationConfig = DEFAULT_CONFIG) -> tuple[tuple[int, ...], int | None]:
    """
    Pick the strong Fermat bases for n.

    Returns:
        (bases, bound) where bound is the deterministic bound the base set is
        proven exhaustive for, or None above every known bound
    """
    if n < SINCLAIR_BOUND:
        return SINCLAIR_BASES, SINCLAIR_BOUND
    if n < SORENSON_WEBSTER_BOUND:
        return FIRST_13_PRIME_BASES, SORENSON_WEBSTER_BOUND
    bases = config.fermat_bases
    if bases is None:
        bases = get_small_primes(1000)[:config.witness_count]
    return (2,) + tuple(b for b in bases if b != 2), None


# ============================================================================
# LUCAS SEQUENCE TESTER
# ============================================================================

@dataclass(frozen=True)
class LucasResult:
    outcome: TestOutcome
    parameters: LucasParameters | None = None
    # nontrivial divisor met while choosing D (or the square root of n)
    divisor: int | None = None


def selfridge_parameters(n: int) -> LucasParameters | int:
    """
    Selfridge method A: first D in 5, -7, 9, -11, ... with Jacobi(D|n) = -1.

    Returns the parameters, or a nontrivial divisor of n if one turns up
    during the search. n must be odd and not a perfect square.
    """
    n = mpz(n)
    D = 5
    while True:
        j = gmpy2.jacobi(D, n)
        if j == -1:
            return LucasParameters(D=D, P=1, Q=(1 - D) // 4)
        if j == 0:
            g = gmpy2.gcd(abs(D), n)
            if g < n:
                return int(g)
        D = -D - 2 if D > 0 else -D + 2


def strong_lucas_test(n: int, ctx: ModulusContext | None = None) -> LucasResult:
    """
    Strong Lucas probable-prime test with Selfridge parameters.

    Args:
        n: Odd integer >= 3
        ctx: Optional context for modulus n

    Returns:
        LucasResult with the outcome, the parameters used, and the divisor
        when the discriminant search or the square check exposed one
    """
    if n < 3 or n % 2 == 0:
        raise ValueError(f"n must be odd and >= 3, got {n}")
    if gmpy2.is_square(n):
        return LucasResult(TestOutcome.COMPOSITE, divisor=int(gmpy2.isqrt(n)))

    params = selfridge_parameters(n)
    if isinstance(params, int):
        return LucasResult(TestOutcome.COMPOSITE, divisor=params)

    if ctx is None:
        ctx = ModulusContext(n)
    P = ctx.reduce(params.P)
    Q = ctx.reduce(params.Q)
    D = ctx.reduce(params.D)

    s, d = two_adic_split(n + 1)
    # U_1, V_1, Q^1; walk the bits of d below the leading one
    U, V, Qk = mpz(1), P, Q
    for bit in bin(d)[3:]:
        U = ctx.mulmod(U, V)
        V = ctx.submod(ctx.sqrmod(V), 2 * Qk)
        Qk = ctx.sqrmod(Qk)
        if bit == '1':
            U, V = ctx.half(P * U + V), ctx.half(D * U + P * V)
            Qk = ctx.mulmod(Qk, Q)

    if U == 0 or V == 0:
        return LucasResult(TestOutcome.PROBABLY_PRIME, params)
    for _ in range(s - 1):
        V = ctx.submod(ctx.sqrmod(V), 2 * Qk)
        Qk = ctx.sqrmod(Qk)
        if V == 0:
            return LucasResult(TestOutcome.PROBABLY_PRIME, params)
    return LucasResult(TestOutcome.COMPOSITE, params)


# ============================================================================
# PRIMALITY ORACLE
# ============================================================================

def certify_primality(n: int, config: FactorizationConfig | None = None) -> PrimalityCertificate:
    """
    Classify n and return the certificate describing the evidence.

    Order: small cases, trial division by the small-prime table, strong Fermat
    with the base set for n's size, strong Lucas. A composite verdict is final
    as soon as a witness appears.
    """
    if config is None:
        config = DEFAULT_CONFIG
    if n < 2:
        raise InvalidInput(f"{n} is not a primality candidate")
    n = int(n)
    table = small_prime_table(config.trial_bound)

    if n in (2, 3):
        return PrimalityCertificate(n, DefinitelyPrime(SmallPrimeProof(table.bound)), trial_bound=table.bound)
    if n % 2 == 0:
        return PrimalityCertificate(n, CompositeWitnessed(2, "even"), trial_bound=table.bound)

    if n in table:
        return PrimalityCertificate(n, DefinitelyPrime(SmallPrimeProof(table.bound)), trial_bound=table.bound)
    divisors = table.dividing(n, limit=min(table.bound, math.isqrt(n)))
    if divisors:
        return PrimalityCertificate(n, CompositeWitnessed(divisors[0], "divisor"), trial_bound=table.bound)
    if n < table.proven_limit:
        return PrimalityCertificate(n, DefinitelyPrime(SmallPrimeProof(table.bound)), trial_bound=table.bound)

    ctx = ModulusContext(n)
    bases, bound = witness_bases(n, config)
    tested: list[int] = []
    for base in bases:
        a = base % n
        if a in (0, 1, n - 1):
            continue
        tested.append(a)
        if strong_fermat_test(n, a, ctx) is TestOutcome.COMPOSITE:
            logger.debug("base %d witnesses compositeness of %d", a, n)
            return PrimalityCertificate(n, CompositeWitnessed(a, "strong-fermat"),
                                        fermat_bases=tuple(tested), trial_bound=table.bound)

    lucas = strong_lucas_test(n, ctx)
    if lucas.outcome is TestOutcome.COMPOSITE:
        if lucas.divisor is not None:
            method = "perfect-square" if lucas.parameters is None and lucas.divisor ** 2 == n else "lucas-discriminant"
            verdict = CompositeWitnessed(lucas.divisor, method)
        else:
            verdict = CompositeWitnessed(lucas.parameters.D, "strong-lucas")
        return PrimalityCertificate(n, verdict, fermat_bases=tuple(tested),
                                    lucas=lucas.parameters, trial_bound=table.bound)

    if bound is not None and n < bound:
        verdict = DefinitelyPrime(DeterministicWitnessProof(bases=tuple(tested), bound=bound))
    else:
        verdict = ProbablyPrime()
    return PrimalityCertificate(n, verdict, fermat_bases=tuple(tested),
                                lucas=lucas.parameters, trial_bound=table.bound)


@lru_cache(maxsize=128)
def is_prime(n: int) -> bool:
    """BPSW-strength primality check with the default configuration (memoized)."""
    if n < 2:
        return False
    return certify_primality(n).is_prime
