"""
Default thresholds for liquidity migration detection.
No USD conversions - reserves are compared in native on-chain units.
"""

class DetectionConfig:
    """Defaults loaded into a fresh TrapConfig and operator settings"""

    # ========================================================================
    # TRAP THRESHOLDS (defaults until the owner replaces them)
    # ========================================================================
    # Minimum integer percentage drop of the primary pool before an alert is considered
    DROP_THRESHOLD_PCT = 30
    # Compensation (other-pool increase relative to the drop) at or above this is a benign migration
    COMPENSATION_THRESHOLD_PCT = 50
    # Previous snapshot total below this is ignored as noise (native units)
    MIN_TOTAL_LIQUIDITY = 0
    # Minimum blocks between compared snapshots
    CONFIRM_BLOCKS = 1

    # ========================================================================
    # STORAGE WIDTHS
    # ========================================================================
    MAX_POOLS = 8
    UINT16_MAX = 2 ** 16 - 1
    UINT64_MAX = 2 ** 64 - 1
    UINT256_MAX = 2 ** 256 - 1

    # ========================================================================
    # OPERATOR CADENCE
    # ========================================================================
    SAMPLE_INTERVAL_BLOCKS = 1           # Collect a snapshot every N blocks
    SNAPSHOT_WINDOW = 10                 # Recent snapshots retained by the operator
    HEARTBEAT_EVERY_POLLS = 60           # Log a heartbeat line every N polls

    # ========================================================================
    # CAPABILITY PROBE
    # ========================================================================
    RPC_TIMEOUT_SECONDS = 2              # Per-call timeout; a hung source degrades to zero
    PROBE_MAX_WORKERS = 1                # >1 probes pools in parallel (output order is unchanged)

    # ========================================================================
    # ALERT SINK
    # ========================================================================
    ALERT_STORAGE_SIZE = 1000            # Alerts kept in memory by the API server
