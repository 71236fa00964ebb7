"""
Primality proofs above the deterministic witness bounds, and independent
re-verification of any PrimalityCertificate.

A probable prime n is proven with the Pocklington-Lehmer theorem: factor
n - 1 = F * R far enough that F^2 > n, prove every prime q | F recursively,
and find for each q a base a with

    a^(n-1) = 1 (mod n)    and    gcd(a^((n-1)/q) - 1, n) = 1

The recursion ends at primes the oracle already proves (small-prime table or
deterministic witness sets). Factoring n - 1 spends a separate proof budget;
when it runs out the certificate stays ProbablyPrime.
"""
import logging
import math

import gmpy2

from factoring_stages import FactorSplit, PrimePowersStripped, perfect_power, pollard_rho_brent, trial_division
from factorization_config import DEFAULT_CONFIG, FactorizationConfig, OperationBudget
from modular_arithmetic import ModulusContext
from primality import (
    FIRST_13_PRIME_BASES,
    SINCLAIR_BASES,
    SINCLAIR_BOUND,
    SORENSON_WEBSTER_BOUND,
    CompositeWitnessed,
    DefinitelyPrime,
    DeterministicWitnessProof,
    PocklingtonFactor,
    PocklingtonProof,
    PrimalityCertificate,
    ProbablyPrime,
    SmallPrimeProof,
    TestOutcome,
    certify_primality,
    strong_fermat_test,
    strong_lucas_test,
)
from small_primes import small_prime_table

logger = logging.getLogger(__name__)

# Bases tried per prime q of F before giving up on the proof.
MAX_POCKLINGTON_BASES = 64

_DETERMINISTIC_BASE_SETS = {
    SINCLAIR_BOUND: SINCLAIR_BASES,
    SORENSON_WEBSTER_BOUND: FIRST_13_PRIME_BASES,
}


def certify(n: int, config: FactorizationConfig | None = None,
            budget: OperationBudget | None = None) -> PrimalityCertificate:
    """
    Run the oracle on n and try to prove any probable prime.

    Args:
        n: Integer >= 2
        config: Oracle and proof settings
        budget: Proof budget shared by the whole recursion; a fresh one of
            config.proof_operations is used when omitted

    Returns:
        The oracle's certificate, upgraded to a Pocklington proof or
        downgraded to a witnessed composite when the proof attempt says so
    """
    if config is None:
        config = DEFAULT_CONFIG
    cert = certify_primality(n, config)
    if not isinstance(cert.verdict, ProbablyPrime) or not config.prove_primes:
        return cert
    if budget is None:
        budget = OperationBudget(config.proof_operations)
    return prove_prime(cert, config, budget)


def _factor_n_minus_one(n: int, config: FactorizationConfig, budget: OperationBudget):
    """
    Factor n - 1 until the proven part F has F^2 > n.

    Returns:
        List of (q, exponent, certificate) for the primes of F, or None when
        the budget ran out or a piece could not be proven
    """
    m = n - 1
    table = small_prime_table(config.trial_bound)
    found: dict[int, tuple[int, PrimalityCertificate]] = {}
    F = 1

    outcome = trial_division(m, budget.allowance(len(table)), table)
    budget.charge(outcome.work)
    if isinstance(outcome, PrimePowersStripped):
        for p, e in outcome.prime_powers:
            found[p] = (e, certify_primality(p, config))
            F *= p ** e
        m = outcome.cofactor

    pending = [m] if m > 1 else []
    while pending and F * F <= n:
        if budget.exhausted():
            logger.debug("proof budget exhausted while factoring %d - 1", n)
            return None
        r = pending.pop()
        if r in found:
            continue

        rcert = certify_primality(r, config)
        if rcert.is_prime:
            if not rcert.is_proven:
                rcert = prove_prime(rcert, config, budget)
                if not rcert.is_proven:
                    return None
            e = int(gmpy2.remove(n - 1, r)[1])
            found[r] = (e, rcert)
            F *= r ** e
            continue

        outcome = perfect_power(r, budget.allowance(r.bit_length()))
        budget.charge(outcome.work)
        if not isinstance(outcome, FactorSplit):
            outcome = pollard_rho_brent(
                r,
                budget.allowance(config.rho_restarts * config.rho_max_iterations),
                restarts=config.rho_restarts,
                max_iterations=config.rho_max_iterations,
                batch=config.rho_batch,
                seed=config.seed,
            )
            budget.charge(outcome.work)
        if isinstance(outcome, FactorSplit):
            pending.extend((outcome.divisor, outcome.cofactor))
        else:
            logger.debug("setting aside unfactored part %d of %d - 1", r, n)

    if F * F <= n:
        return None
    return [(q, e, c) for q, (e, c) in sorted(found.items())]


def prove_prime(cert: PrimalityCertificate, config: FactorizationConfig,
                budget: OperationBudget) -> PrimalityCertificate:
    """
    Attempt a Pocklington-Lehmer proof for a probable prime.

    Returns:
        The certificate with a DefinitelyPrime(PocklingtonProof) verdict, a
        CompositeWitnessed verdict if a base exposed n, or cert unchanged
    """
    n = cert.n
    factored = _factor_n_minus_one(n, config, budget)
    if factored is None:
        return cert

    ctx = ModulusContext(n)
    fermat: dict[int, bool] = {}
    proof_factors = []
    for q, e, qcert in factored:
        for a in range(2, 2 + MAX_POCKLINGTON_BASES):
            if a not in fermat:
                fermat[a] = ctx.powmod(a, n - 1) == 1
            if not fermat[a]:
                logger.debug("%d fails the Fermat test for base %d", n, a)
                return cert.with_witness(a, "fermat")
            g = ctx.gcd(ctx.powmod(a, (n - 1) // q) - 1)
            if g == 1:
                proof_factors.append(PocklingtonFactor(q, e, a, qcert))
                break
            if g != n:
                return cert.with_witness(g, "divisor")
        else:
            logger.debug("no Pocklington base for q=%d of %d", q, n)
            return cert

    F = math.prod(q ** e for q, e, _ in factored)
    logger.debug("proved %d prime with %d factors of n - 1", n, len(proof_factors))
    return cert.with_proof(PocklingtonProof(tuple(proof_factors), (n - 1) // F))


# ============================================================================
# VERIFICATION
# ============================================================================

def _verify_composite(n: int, verdict: CompositeWitnessed) -> bool:
    w = verdict.witness
    if verdict.method in ('even', 'divisor', 'perfect-square', 'lucas-discriminant'):
        return 1 < w < n and n % w == 0
    if verdict.method == 'strong-fermat':
        return n >= 5 and n % 2 == 1 and 1 < w < n - 1 and strong_fermat_test(n, w) is TestOutcome.COMPOSITE
    if verdict.method == 'fermat':
        return 1 < w < n and gmpy2.powmod(w, n - 1, n) != 1
    if verdict.method == 'strong-lucas':
        if n < 3 or n % 2 == 0:
            return False
        lucas = strong_lucas_test(n)
        return lucas.outcome is TestOutcome.COMPOSITE and lucas.parameters is not None and lucas.parameters.D == w
    return False


def _verify_small_prime(n: int, proof: SmallPrimeProof) -> bool:
    if n in (2, 3):
        return True
    table = small_prime_table(proof.bound)
    if n in table:
        return True
    if n >= table.proven_limit:
        return False
    return not table.dividing(n, limit=min(table.bound, math.isqrt(n)))


def _verify_deterministic(n: int, proof: DeterministicWitnessProof) -> bool:
    required = _DETERMINISTIC_BASE_SETS.get(proof.bound)
    if required is None or n >= proof.bound or n < 5 or n % 2 == 0:
        return False
    for base in required:
        a = base % n
        if a in (0, 1, n - 1):
            continue
        if a not in proof.bases:
            return False
    return all(strong_fermat_test(n, a) is TestOutcome.PROBABLY_PRIME for a in proof.bases)


def _verify_pocklington(n: int, proof: PocklingtonProof) -> bool:
    F = proof.factored_part
    if F * proof.cofactor != n - 1 or F * F <= n:
        return False
    for factor in proof.factors:
        q = factor.prime
        if factor.certificate.n != q or not factor.certificate.is_proven:
            return False
        if (n - 1) % (q ** factor.exponent) != 0:
            return False
        if gmpy2.powmod(factor.base, n - 1, n) != 1:
            return False
        if gmpy2.gcd(gmpy2.powmod(factor.base, (n - 1) // q, n) - 1, n) != 1:
            return False
        if not verify_certificate(factor.certificate):
            return False
    return True


def verify_certificate(cert: PrimalityCertificate) -> bool:
    """
    Re-derive every claim a certificate makes, independently of how it was
    produced. Pocklington proofs are checked recursively.
    """
    n = cert.n
    if n < 2:
        return False
    verdict = cert.verdict
    if isinstance(verdict, CompositeWitnessed):
        return _verify_composite(n, verdict)
    if isinstance(verdict, ProbablyPrime):
        if n % 2 == 0:
            return n == 2
        if any(not 1 < a < n - 1 or strong_fermat_test(n, a) is TestOutcome.COMPOSITE for a in cert.fermat_bases):
            return False
        return cert.lucas is None or strong_lucas_test(n).outcome is TestOutcome.PROBABLY_PRIME
    if isinstance(verdict, DefinitelyPrime):
        proof = verdict.proof
        if isinstance(proof, SmallPrimeProof):
            return _verify_small_prime(n, proof)
        if isinstance(proof, DeterministicWitnessProof):
            return _verify_deterministic(n, proof)
        if isinstance(proof, PocklingtonProof):
            return _verify_pocklington(n, proof)
    return False
