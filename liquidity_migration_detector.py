"""
Liquidity Migration Detection
Compares two liquidity snapshots and decides whether liquidity left the primary pool
without a matching increase in the other pools.
No USD conversions - integer percentages of native reserve units only.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple

import requests

from detection_config import DetectionConfig
from trap_config import TrapConfig

# ============================================================================
# Data Structures
# ============================================================================

@dataclass(frozen=True)
class Snapshot:
    """Liquidity across all configured pools at one block"""
    timestamp: int
    block_height: int
    pools: Tuple[str, ...]
    liquidity: Tuple[int, ...]

    def is_empty(self) -> bool:
        return not self.pools and not self.liquidity

    def to_wire(self) -> tuple:
        return (self.timestamp, self.block_height, tuple(self.pools), tuple(self.liquidity))

    @classmethod
    def from_wire(cls, wire: Sequence) -> 'Snapshot':
        if len(wire) != 4:
            raise ValueError(f"Snapshot tuple must have 4 fields, got {len(wire)}")
        timestamp, block_height, pools, liquidity = wire
        return cls(
            timestamp=timestamp,
            block_height=block_height,
            pools=tuple(pools),
            liquidity=tuple(liquidity),
        )

@dataclass(frozen=True)
class AlertPayload:
    """Alert produced by a triggering evaluation"""
    primary_pool: str
    block_height: int
    curr_total: int
    curr_primary: int
    drop_pct: int
    other_increase_pct: int
    timestamp: int

    def to_wire(self) -> tuple:
        return (
            self.primary_pool,
            self.block_height,
            self.curr_total,
            self.curr_primary,
            self.drop_pct,
            self.other_increase_pct,
            self.timestamp,
        )

    @classmethod
    def from_wire(cls, wire: Sequence) -> 'AlertPayload':
        """Decode the ordered 7-tuple, raises ValueError on a malformed tuple"""
        if isinstance(wire, (str, bytes)) or len(wire) != 7:
            raise ValueError("Alert payload must be a 7-field tuple")
        primary_pool, *numbers = wire
        if not isinstance(primary_pool, str) or not primary_pool:
            raise ValueError("primary_pool must be a non-empty identifier")
        for value in numbers:
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"Alert payload field is not an unsigned integer: {value!r}")
        return cls(primary_pool, *numbers)

    def to_dict(self) -> dict:
        """Convert alert to dictionary for API"""
        return {
            'primary_pool': self.primary_pool,
            'block_height': self.block_height,
            'curr_total': self.curr_total,
            'curr_primary': self.curr_primary,
            'drop_pct': self.drop_pct,
            'other_increase_pct': self.other_increase_pct,
            'timestamp': self.timestamp,
        }

NO_ALERT: Tuple[bool, Optional[AlertPayload]] = (False, None)

# ============================================================================
# Detection Engine
# ============================================================================

def _is_uint256(value) -> bool:
    return (not isinstance(value, bool) and isinstance(value, int)
            and 0 <= value <= DetectionConfig.UINT256_MAX)

def _checked_total(values: Sequence[int]) -> Optional[int]:
    """Sum of u256 values, None if any value or the sum leaves the u256 range"""
    if not all(_is_uint256(v) for v in values):
        return None
    total = sum(values)
    if total > DetectionConfig.UINT256_MAX:
        return None
    return total

def evaluate(newer: Optional[Snapshot], older: Optional[Snapshot],
             config: TrapConfig) -> Tuple[bool, Optional[AlertPayload]]:
    """
    Decide whether the primary pool lost liquidity that did not move elsewhere.

    Pure function of its arguments: no clock, no I/O, no logging. Guards run in
    order and the first failing one returns (False, None).
    """
    if newer is None or older is None or newer.is_empty() or older.is_empty():
        return NO_ALERT

    # Pool count changed between cycles: snapshots are not comparable
    n = len(newer.pools)
    if n == 0 or len(older.pools) != n or len(newer.liquidity) != n or len(older.liquidity) != n:
        return NO_ALERT

    prev_total = _checked_total(older.liquidity)
    curr_total = _checked_total(newer.liquidity)
    if prev_total is None or curr_total is None:
        return NO_ALERT

    if prev_total < config.min_total_liquidity:
        return NO_ALERT

    if newer.block_height < older.block_height + config.confirm_blocks:
        return NO_ALERT

    prev_primary = older.liquidity[0]
    if prev_primary == 0:
        return NO_ALERT

    curr_primary = newer.liquidity[0]
    if curr_primary >= prev_primary:
        return NO_ALERT

    drop_pct = (prev_primary - curr_primary) * 100 // prev_primary
    if drop_pct < config.drop_threshold_pct:
        return NO_ALERT

    prev_other = prev_total - prev_primary
    curr_other = curr_total - curr_primary
    if prev_other == 0 or curr_other <= prev_other:
        other_increase_pct = 0
    else:
        other_increase_pct = (curr_other - prev_other) * 100 // prev_other

    compensation_pct = other_increase_pct * 100 // drop_pct if drop_pct > 0 else 0
    # Enough compensation means the liquidity migrated rather than vanished
    if compensation_pct >= config.compensation_threshold_pct:
        return NO_ALERT

    return True, AlertPayload(
        primary_pool=newer.pools[0],
        block_height=newer.block_height,
        curr_total=curr_total,
        curr_primary=curr_primary,
        drop_pct=drop_pct,
        other_increase_pct=other_increase_pct,
        timestamp=newer.timestamp,
    )

def should_respond(snapshots: Sequence[Optional[Snapshot]],
                   config: TrapConfig) -> Tuple[bool, Optional[AlertPayload]]:
    """Evaluate an operator window ordered newest first"""
    if snapshots is None or len(snapshots) < 2:
        return NO_ALERT
    return evaluate(snapshots[0], snapshots[1], config)

# ============================================================================
# Helper Functions
# ============================================================================

def format_alert(payload: AlertPayload) -> str:
    """Format an alert for display"""
    alert_time = datetime.fromtimestamp(payload.timestamp, tz=timezone.utc)
    return f"""
{'='*80}
🚨 LIQUIDITY MIGRATION ALERT
{'='*80}
Primary Pool: {payload.primary_pool}
Block: {payload.block_height}
Time: {alert_time.strftime('%Y-%m-%d %H:%M:%S UTC')}

Primary liquidity dropped {payload.drop_pct}% without matching inflow elsewhere

Current State:
    - Primary Liquidity: {payload.curr_primary:,}
    - Total Liquidity: {payload.curr_total:,}
    - Other Pools Increase: {payload.other_increase_pct}%
{'='*80}
"""

def send_alert_to_api(payload: AlertPayload, api_url: str = 'http://localhost:5001', logger=None) -> bool:
    """Send alert payload to the alert sink"""
    try:
        response = requests.post(
            f'{api_url}/api/alerts',
            json={'payload': list(payload.to_wire())},
            timeout=2
        )
        if response.status_code == 200:
            if logger:
                logger.debug(f"Alert sent to API successfully: {payload.primary_pool} @ {payload.block_height}")
            return True
        else:
            if logger:
                logger.warning(f"API returned status {response.status_code} for alert")
            return False
    except requests.exceptions.ConnectionError:
        if logger:
            logger.warning(f"Could not connect to API at {api_url} - is the server running?")
        return False
    except Exception as e:
        if logger:
            logger.warning(f"Error sending alert to API: {e}")
        return False
