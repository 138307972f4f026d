"""
Snapshot collection across heterogeneous liquidity sources.
Each pool is probed with paired reserves first, then a single liquidity figure.
A pool that supports neither (or fails both) contributes zero.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from detection_config import DetectionConfig
from liquidity_migration_detector import Snapshot
from trap_config import TrapConfig

logger = logging.getLogger(__name__)

PAIRED_RESERVES = 'paired_reserves'
SINGLE_LIQUIDITY = 'single_liquidity'

# ============================================================================
# Data Structures
# ============================================================================

@dataclass(frozen=True)
class ProbeAttempt:
    """Outcome of one interface attempt against a source"""
    method: str
    ok: bool
    value: int = 0
    error: Optional[str] = None

@dataclass(frozen=True)
class ProbeResult:
    """Approximate liquidity of a source and the attempts that produced it"""
    liquidity: int
    method: Optional[str]
    attempts: Tuple[ProbeAttempt, ...] = field(default_factory=tuple)

    @property
    def supported(self) -> bool:
        return self.method is not None

# ============================================================================
# Capability Probe
# ============================================================================

def _as_magnitude(value) -> int:
    """Validate a decoded unsigned magnitude"""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Expected an integer magnitude, got {type(value).__name__}")
    if value < 0 or value > DetectionConfig.UINT256_MAX:
        raise ValueError(f"Magnitude out of uint256 range: {value}")
    return value

def _paired_reserves(source) -> int:
    reserves = tuple(source.get_reserves())
    if len(reserves) < 2:
        raise ValueError(f"Expected two reserves, got {len(reserves)}")
    total = _as_magnitude(reserves[0]) + _as_magnitude(reserves[1])
    return _as_magnitude(total)

def _single_liquidity(source) -> int:
    return _as_magnitude(source.liquidity())

# Priority order: first success wins
PROBE_CHAIN: Tuple[Tuple[str, Callable], ...] = (
    (PAIRED_RESERVES, _paired_reserves),
    (SINGLE_LIQUIDITY, _single_liquidity),
)

def _attempt(method: str, query: Callable, source) -> ProbeAttempt:
    try:
        return ProbeAttempt(method=method, ok=True, value=query(source))
    except Exception as e:
        # Reverts, empty return data, decoding errors and missing methods all mean "unsupported"
        logger.debug(f"{source!r}: {method} unsupported ({type(e).__name__}: {e})")
        return ProbeAttempt(method=method, ok=False, error=f"{type(e).__name__}: {e}")

def probe_liquidity(source) -> ProbeResult:
    """Approximate liquidity of one source, 0 when no interface answers"""
    attempts: List[ProbeAttempt] = []
    for method, query in PROBE_CHAIN:
        attempt = _attempt(method, query, source)
        attempts.append(attempt)
        if attempt.ok:
            return ProbeResult(liquidity=attempt.value, method=method, attempts=tuple(attempts))
    return ProbeResult(liquidity=0, method=None, attempts=tuple(attempts))

# ============================================================================
# Collector
# ============================================================================

def _probe_pool(pool: str, resolve_source: Callable) -> int:
    try:
        source = resolve_source(pool)
    except Exception as e:
        logger.warning(f"Could not resolve liquidity source for {pool}: {e}")
        return 0
    result = probe_liquidity(source)
    if not result.supported:
        logger.warning(f"Pool {pool} answered no liquidity interface, counting as 0")
    return result.liquidity

def collect(config: TrapConfig, block_height: int, timestamp: int,
            resolve_source: Callable, max_workers: Optional[int] = None) -> Snapshot:
    """
    Build one snapshot of every configured pool.

    `resolve_source(pool)` returns an object exposing get_reserves() and/or
    liquidity(). Failures degrade that pool to 0; the snapshot always holds an
    entry for every configured pool, in configured order.
    """
    pools = tuple(config.pools)
    workers = DetectionConfig.PROBE_MAX_WORKERS if max_workers is None else max_workers

    if workers > 1 and len(pools) > 1:
        with ThreadPoolExecutor(max_workers=min(workers, len(pools))) as executor:
            # map() yields results in input order
            liquidity = tuple(executor.map(lambda pool: _probe_pool(pool, resolve_source), pools))
    else:
        liquidity = tuple(_probe_pool(pool, resolve_source) for pool in pools)

    return Snapshot(
        timestamp=timestamp,
        block_height=block_height,
        pools=pools,
        liquidity=liquidity,
    )
