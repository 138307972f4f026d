"""
Trap configuration store.
Holds the ordered pool list (index 0 = primary) and the threshold parameters.
Only the owner may replace them, and the owner is claimed exactly once.
"""

import re
import threading
import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from detection_config import DetectionConfig

ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')
ZERO_ADDRESS = '0x' + '0' * 40

logger = logging.getLogger(__name__)

# ============================================================================
# Errors
# ============================================================================

class ConfigError(Exception):
    """Base class for rejected administrative operations"""

class AlreadyOwned(ConfigError):
    pass

class InvalidIdentity(ConfigError):
    pass

class Unauthorized(ConfigError):
    pass

class InvalidPoolList(ConfigError):
    pass

class InvalidThreshold(ConfigError):
    pass

# ============================================================================
# Data Structures
# ============================================================================

@dataclass(frozen=True)
class TrapConfig:
    """Immutable view of the trap configuration"""
    pools: Tuple[str, ...] = ()
    drop_threshold_pct: int = DetectionConfig.DROP_THRESHOLD_PCT
    compensation_threshold_pct: int = DetectionConfig.COMPENSATION_THRESHOLD_PCT
    min_total_liquidity: int = DetectionConfig.MIN_TOTAL_LIQUIDITY
    confirm_blocks: int = DetectionConfig.CONFIRM_BLOCKS
    owner: Optional[str] = None

    @property
    def primary_pool(self) -> Optional[str]:
        return self.pools[0] if self.pools else None

    def to_dict(self) -> Dict:
        """Convert config to dictionary for API"""
        return {
            'pools': list(self.pools),
            'drop_threshold_pct': self.drop_threshold_pct,
            'compensation_threshold_pct': self.compensation_threshold_pct,
            # u256 as a decimal string
            'min_total_liquidity': str(self.min_total_liquidity),
            'confirm_blocks': self.confirm_blocks,
            'owner': self.owner,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'TrapConfig':
        return cls(
            pools=tuple(data.get('pools') or ()),
            drop_threshold_pct=int(data.get('drop_threshold_pct', DetectionConfig.DROP_THRESHOLD_PCT)),
            compensation_threshold_pct=int(data.get('compensation_threshold_pct', DetectionConfig.COMPENSATION_THRESHOLD_PCT)),
            min_total_liquidity=int(data.get('min_total_liquidity', DetectionConfig.MIN_TOTAL_LIQUIDITY)),
            confirm_blocks=int(data.get('confirm_blocks', DetectionConfig.CONFIRM_BLOCKS)),
            owner=data.get('owner'),
        )

# ============================================================================
# Helper Functions
# ============================================================================

def is_valid_identity(candidate) -> bool:
    """Non-zero 0x-prefixed 20-byte hex address"""
    if not isinstance(candidate, str) or not ADDRESS_RE.match(candidate):
        return False
    return candidate.lower() != ZERO_ADDRESS

def _check_width(name: str, value, maximum: int) -> int:
    # bool is an int subclass but never a valid threshold
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidThreshold(f"{name} must be an integer")
    if value < 0 or value > maximum:
        raise InvalidThreshold(f"{name} must be between 0 and {maximum}")
    return value

def _check_pool_entries(pools: Tuple):
    seen = set()
    for pool in pools:
        if not isinstance(pool, str) or not pool.strip():
            raise InvalidPoolList(f"Pool identifier must be a non-empty string, got {pool!r}")
        key = pool.strip().lower()
        if key in seen:
            raise InvalidPoolList(f"Duplicate pool identifier: {pool}")
        seen.add(key)

def _same_identity(a: Optional[str], b: Optional[str]) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()

# ============================================================================
# Config Store
# ============================================================================

class ConfigStore:
    """Single authoritative TrapConfig with owner-gated, atomic replacement"""

    def __init__(self, config: Optional[TrapConfig] = None):
        self._config = config or TrapConfig()
        self._lock = threading.Lock()
        self._listeners: List[Callable[[str, TrapConfig], None]] = []

    @property
    def current(self) -> TrapConfig:
        # Frozen value: readers see either the old or the new config in full
        return self._config

    @property
    def owner(self) -> Optional[str]:
        return self._config.owner

    def add_listener(self, callback: Callable[[str, TrapConfig], None]):
        """Register a change notification callback(event, config)"""
        self._listeners.append(callback)

    def claim_owner(self, candidate: str) -> TrapConfig:
        """First successful caller becomes the owner"""
        with self._lock:
            if self._config.owner is not None:
                raise AlreadyOwned(f"Trap already owned by {self._config.owner}")
            if not is_valid_identity(candidate):
                raise InvalidIdentity(f"Invalid owner identity: {candidate!r}")
            self._config = replace(self._config, owner=candidate)
            new_config = self._config
        logger.info(f"Ownership claimed by {candidate}")
        self._notify('owner_claimed', new_config)
        return new_config

    def set_pools(self, caller: str, pools: Sequence[str]) -> TrapConfig:
        """Replace the whole pool list; index 0 becomes the new primary"""
        with self._lock:
            self._require_owner(caller)
            if not isinstance(pools, (list, tuple)):
                raise InvalidPoolList("Pool list must be a sequence of identifiers")
            pools = tuple(pools)
            if not pools or len(pools) > DetectionConfig.MAX_POOLS:
                raise InvalidPoolList(f"Pool list must contain 1 to {DetectionConfig.MAX_POOLS} entries, got {len(pools)}")
            _check_pool_entries(pools)
            self._config = replace(self._config, pools=pools)
            new_config = self._config
        logger.info(f"Pools updated: primary={pools[0]}, total={len(pools)}")
        self._notify('pools_updated', new_config)
        return new_config

    def set_thresholds(self, caller: str, drop_pct: int, compensation_pct: int, confirm_blocks: int) -> TrapConfig:
        """Replace drop/compensation thresholds and the confirmation window"""
        with self._lock:
            self._require_owner(caller)
            drop_pct = _check_width('drop_threshold_pct', drop_pct, DetectionConfig.UINT16_MAX)
            compensation_pct = _check_width('compensation_threshold_pct', compensation_pct, DetectionConfig.UINT16_MAX)
            confirm_blocks = _check_width('confirm_blocks', confirm_blocks, DetectionConfig.UINT16_MAX)
            self._config = replace(
                self._config,
                drop_threshold_pct=drop_pct,
                compensation_threshold_pct=compensation_pct,
                confirm_blocks=confirm_blocks,
            )
            new_config = self._config
        logger.info(f"Thresholds updated: drop={drop_pct}%, compensation={compensation_pct}%, confirm_blocks={confirm_blocks}")
        self._notify('thresholds_updated', new_config)
        return new_config

    def set_min_total_liquidity(self, caller: str, minimum: int) -> TrapConfig:
        with self._lock:
            self._require_owner(caller)
            minimum = _check_width('min_total_liquidity', minimum, DetectionConfig.UINT256_MAX)
            self._config = replace(self._config, min_total_liquidity=minimum)
            new_config = self._config
        logger.info(f"Minimum total liquidity updated: {minimum}")
        self._notify('min_total_liquidity_updated', new_config)
        return new_config

    def _require_owner(self, caller: str):
        if not _same_identity(caller, self._config.owner):
            raise Unauthorized(f"Caller {caller!r} is not the owner")

    def _notify(self, event: str, config: TrapConfig):
        for callback in list(self._listeners):
            try:
                callback(event, config)
            except Exception as e:
                logger.error(f"Config listener failed for {event}: {e}", exc_info=True)
