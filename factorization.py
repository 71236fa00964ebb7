"""
Integer factorization with a primality certificate on every prime factor.

Composite residues are resolved through an explicit work-list: each popped
residue is certified first (primality.py, certification.py), and composites
go through the ordered stages of factoring_stages.py until one of them splits
them. Pieces are pushed back onto the work-list; primes are merged into the
found-factor map.

STAGE ORDER:
1. Trial division by the small-prime table (skipped for residues already
   known to be free of table primes)
2. Perfect power detection
3. Pollard's Rho (Brent) with restarts
4. Pollard's p-1 with an escalating bound schedule

A resource budget (FactorizationConfig.max_operations / time_limit) is checked
before every stage invocation. Running out raises FactorizationIncomplete,
which carries what is needed to call resume_factorization() later.

With config.workers > 1, the residues left after the first split are handed
to a multiprocessing.Pool; every worker runs its own driver and the parent
merges the results.
"""
import logging
import sys
from dataclasses import dataclass, replace
from functools import lru_cache
from multiprocessing import Pool

from gmpy2 import mpz

from certification import certify
from factoring_stages import FactorSplit, PrimePowersStripped, build_stages
from factorization_config import DEFAULT_CONFIG, FactorizationConfig, OperationBudget
from factorization_errors import FactorizationError, FactorizationIncomplete, InvalidInput
from primality import PrimalityCertificate, certify_primality, is_prime
from small_primes import small_prime_table

logger = logging.getLogger(__name__)


# ============================================================================
# RESULTS AND EVENTS
# ============================================================================

@dataclass(frozen=True)
class Factor:
    prime: int
    exponent: int
    certificate: PrimalityCertificate


@dataclass(frozen=True)
class FactorizationResult:
    """Prime factorization of n, factors ascending by prime."""
    n: int
    factors: tuple[Factor, ...] = ()

    def __iter__(self):
        return iter(self.factors)

    def __len__(self) -> int:
        return len(self.factors)

    def __str__(self) -> str:
        if not self.factors:
            return str(self.n)
        return " * ".join(f"{f.prime}^{f.exponent}" if f.exponent > 1 else str(f.prime) for f in self.factors)

    def as_dict(self) -> dict[int, int]:
        return {f.prime: f.exponent for f in self.factors}

    def primes(self) -> list[int]:
        """Prime factors with multiplicity, ascending."""
        return [f.prime for f in self.factors for _ in range(f.exponent)]

    def product(self) -> int:
        result = 1
        for f in self.factors:
            result *= f.prime ** f.exponent
        return result

    @property
    def is_proven(self) -> bool:
        """True when every factor carries a DefinitelyPrime certificate."""
        return all(f.certificate.is_proven for f in self.factors)


class FactoringObserver:
    """
    Receives progress events from a factorization call. Every hook is a
    no-op; subclass and override the ones you need.
    """

    def factorized(self, n: int, parts: tuple[int, ...], stage: str) -> None:
        """A stage split n into parts (prime powers plus cofactor for trial division)."""

    def prime_found(self, certificate: PrimalityCertificate) -> None:
        """A prime was certified and merged into the result."""

    def composite_found(self, n: int, certificate: PrimalityCertificate) -> None:
        """A residue was classified composite and goes to the stages."""


# ============================================================================
# DRIVER
# ============================================================================

class FactorizationDriver:
    """
    Owns the work-list, the found-factor map and the budget of one call.

    Work-list entries are (residue, table_free): table_free marks residues
    already known to have no small-prime-table divisor.
    """

    def __init__(self, n: int, config: FactorizationConfig = DEFAULT_CONFIG,
                 observer: FactoringObserver | None = None, budget: OperationBudget | None = None):
        self.n = n
        self.config = config
        self.observer = observer if observer is not None else FactoringObserver()
        self.budget = budget if budget is not None else OperationBudget.from_config(config)
        self.table = small_prime_table(config.trial_bound)
        self.stages = build_stages(config, self.table)
        self.found: dict[int, Factor] = {}
        self.pending: list[tuple[int, bool]] = []

    def push(self, residue: int, table_free: bool = False) -> None:
        if residue > 1:
            self.pending.append((int(residue), table_free))

    def add_prime(self, certificate: PrimalityCertificate, exponent: int = 1) -> None:
        """Merge p^exponent, keeping the stronger certificate for a repeated prime."""
        p = certificate.n
        existing = self.found.get(p)
        if existing is not None:
            exponent += existing.exponent
            if existing.certificate.strength >= certificate.strength:
                certificate = existing.certificate
        self.found[p] = Factor(p, exponent, certificate)
        self.observer.prime_found(certificate)

    def factors(self) -> tuple[Factor, ...]:
        return tuple(self.found[p] for p in sorted(self.found))

    def incomplete(self, residue: int, reason: str, pending=None) -> FactorizationIncomplete:
        if pending is None:
            pending = tuple(r for r, _ in reversed(self.pending))
        return FactorizationIncomplete(self.n, residue, factors=self.factors(), pending=pending, reason=reason)

    def _check_budget(self, residue: int) -> None:
        if self.budget.expired():
            raise self.incomplete(residue, "time limit reached")
        if self.budget.exhausted():
            raise self.incomplete(residue, "budget exhausted")

    def resolve(self, residue: int, table_free: bool = False) -> None:
        """Certify one residue and, if composite, split it with the first stage that succeeds."""
        cert = certify(residue, self.config)
        if cert.is_prime:
            self.add_prime(cert)
            return
        self.observer.composite_found(residue, cert)

        for stage in self.stages:
            if table_free and stage.name == "trial-division":
                continue
            self._check_budget(residue)
            logger.debug("running %s on %d", stage.name, residue)
            outcome = stage.run(residue, self.budget.allowance(sys.maxsize))
            self.budget.charge(outcome.work)

            if isinstance(outcome, PrimePowersStripped):
                for p, e in outcome.prime_powers:
                    self.add_prime(certify_primality(p, self.config), e)
                parts = tuple(p ** e for p, e in outcome.prime_powers) + (outcome.cofactor,)
                self.observer.factorized(residue, parts, stage.name)
                self.push(outcome.cofactor, table_free=outcome.work >= len(self.table))
                return
            if isinstance(outcome, FactorSplit):
                self.observer.factorized(residue, (outcome.divisor, outcome.cofactor), stage.name)
                self.push(outcome.divisor, table_free)
                self.push(outcome.cofactor, table_free)
                return

            logger.debug("%s found nothing in %d: %s", stage.name, residue, outcome.reason)
            if stage.name == "trial-division" and outcome.work >= len(self.table):
                table_free = True

        raise self.incomplete(residue, "no stage found a divisor")

    def run(self) -> tuple[Factor, ...]:
        """Drain the work-list, handing residues to a worker pool when configured."""
        if self.config.workers > 1:
            while len(self.pending) == 1:
                self.resolve(*self.pending.pop())
            if self.pending:
                self._run_pool()
        while self.pending:
            self.resolve(*self.pending.pop())
        return self.factors()

    def _run_pool(self) -> None:
        residues = list(reversed(self.pending))
        self.pending = []
        self._check_budget(residues[0][0])

        remaining = self.budget.remaining
        seconds = self.budget.remaining_seconds()
        worker_config = replace(
            self.config,
            workers=1,
            max_operations=None if remaining is None else remaining // len(residues),
            time_limit=None if seconds is None else max(seconds, 1e-3),
        )
        jobs = [(r, table_free, worker_config) for r, table_free in residues]
        logger.debug("dispatching %d residues to %d workers", len(jobs), self.config.workers)

        # imap yields in job order, so a failure surfaces at the index of the job that raised
        results = []
        try:
            with Pool(min(self.config.workers, len(jobs))) as pool:
                for result in pool.imap(_resolve_residue_worker, jobs):
                    results.append(result)
        except FactorizationIncomplete as exc:
            self._merge(results)
            for factor in exc.factors:
                self.add_prime(factor.certificate, factor.exponent)
            later = tuple(r for r, _ in residues[len(results) + 1:])
            raise self.incomplete(exc.residue, exc.reason, pending=exc.pending + later) from exc

        self._merge(results)

    def _merge(self, results) -> None:
        for factors, used in results:
            self.budget.charge(used)
            for factor in factors:
                self.add_prime(factor.certificate, factor.exponent)

    def finish(self) -> FactorizationResult:
        """Build the result after checking that the factors multiply back to n."""
        result = FactorizationResult(self.n, self.factors())
        if result.product() != self.n:
            raise FactorizationError(f"factors of {self.n} multiply to {result.product()}")
        return result


def _resolve_residue_worker(job: tuple[int, bool, FactorizationConfig]):
    """Worker function for the pool (must be at module level)."""
    residue, table_free, config = job
    driver = FactorizationDriver(residue, config)
    driver.push(residue, table_free)
    return driver.run(), driver.budget.used


def _validate(n) -> int:
    if isinstance(n, mpz):
        n = int(n)
    if isinstance(n, bool) or not isinstance(n, int):
        raise InvalidInput(f"expected a positive integer, got {type(n).__name__}")
    if n <= 0:
        raise InvalidInput(f"expected a positive integer, got {n}")
    return n


def _drive(driver: FactorizationDriver) -> FactorizationResult:
    try:
        driver.run()
    except FactorizationIncomplete as exc:
        logger.warning("factorization of %d incomplete: %s (residue %d, %d operations used)",
                       driver.n, exc.reason, exc.residue, driver.budget.used)
        raise
    result = driver.finish()
    logger.info("factored %d = %s (%d operations)", driver.n, result, driver.budget.used)
    return result


def factorize(n: int, config: FactorizationConfig | None = None,
              observer: FactoringObserver | None = None) -> FactorizationResult:
    """
    Factor n into certified primes.

    Args:
        n: Positive integer
        config: Stage, oracle and budget settings (defaults when omitted)
        observer: Optional receiver of progress events

    Returns:
        FactorizationResult whose factors multiply to n

    Raises:
        InvalidInput: n is not a positive integer
        FactorizationIncomplete: the budget ran out or no stage could split a residue
    """
    n = _validate(n)
    config = config if config is not None else DEFAULT_CONFIG
    if n == 1:
        return FactorizationResult(1)
    driver = FactorizationDriver(n, config, observer)
    driver.push(n)
    return _drive(driver)


def resume_factorization(incomplete: FactorizationIncomplete, config: FactorizationConfig | None = None,
                         observer: FactoringObserver | None = None) -> FactorizationResult:
    """
    Continue a call that raised FactorizationIncomplete, typically with a
    larger budget. The partial factors are kept; the unresolved residues go
    back onto a fresh work-list.
    """
    config = config if config is not None else DEFAULT_CONFIG
    driver = FactorizationDriver(incomplete.n, config, observer)
    for factor in incomplete.factors:
        driver.add_prime(factor.certificate, factor.exponent)
    for residue in reversed(incomplete.unresolved):
        driver.push(residue)
    return _drive(driver)


# ============================================================================
# CONVENIENCE API
# ============================================================================

@lru_cache(maxsize=256)
def _factor_impl(n: int) -> tuple[int, ...]:
    """Cached factorization (returns tuple for hashability)."""
    return tuple(factorize(n).primes())


def factor(n: int) -> list[int]:
    """
    Factorize n into prime factors.

    Uses memoization to cache results for repeated calls. Call clear_caches()
    to free memory between independent factorization runs.

    Args:
        n: Positive integer to factorize

    Returns:
        List of prime factors with multiplicity, ascending
    """
    return list(_factor_impl(_validate(n)))


def clear_caches():
    """Clear all memoization caches. Useful between independent factorization runs."""
    is_prime.cache_clear()
    _factor_impl.cache_clear()
    small_prime_table.cache_clear()


__all__ = [
    'Factor',
    'FactorizationResult',
    'FactoringObserver',
    'FactorizationDriver',
    'factorize',
    'resume_factorization',
    'factor',
    'is_prime',
    'clear_caches',
]


# Example usage
if __name__ == "__main__":
    n = 123456789101112  # test number
    print("Factors of", n, ":", factorize(n))
