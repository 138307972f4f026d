#!/usr/bin/env python3
"""
Tests for the trap config store: ownership, owner-gated setters, atomic replacement
"""

import threading

import pytest

from detection_config import DetectionConfig
from trap_config import (
    AlreadyOwned, ConfigStore, InvalidIdentity, InvalidPoolList, InvalidThreshold, TrapConfig, Unauthorized,
)

OWNER = '0x' + 'ab12' * 10
OTHER = '0x' + '2' * 40
POOLS = tuple('0x' + c * 40 for c in 'abcdef')

@pytest.fixture
def store():
    return ConfigStore()

@pytest.fixture
def owned_store(store):
    store.claim_owner(OWNER)
    return store

def test_fresh_store_has_defaults_and_no_owner(store):
    config = store.current
    assert config.owner is None
    assert config.pools == ()
    assert config.drop_threshold_pct == DetectionConfig.DROP_THRESHOLD_PCT
    assert config.compensation_threshold_pct == DetectionConfig.COMPENSATION_THRESHOLD_PCT
    assert config.min_total_liquidity == DetectionConfig.MIN_TOTAL_LIQUIDITY
    assert config.confirm_blocks == DetectionConfig.CONFIRM_BLOCKS

def test_first_claim_wins(store):
    store.claim_owner(OWNER)
    assert store.owner == OWNER

    with pytest.raises(AlreadyOwned):
        store.claim_owner(OTHER)
    assert store.owner == OWNER

@pytest.mark.parametrize('candidate', [None, '', 'alice', '0x1234', '0x' + '0' * 40, '0x' + 'g' * 40])
def test_invalid_identity_cannot_claim(store, candidate):
    with pytest.raises(InvalidIdentity):
        store.claim_owner(candidate)
    assert store.owner is None

def test_only_owner_can_set_pools(owned_store):
    with pytest.raises(Unauthorized):
        owned_store.set_pools(OTHER, POOLS[:2])
    with pytest.raises(Unauthorized):
        owned_store.set_pools(None, POOLS[:2])
    assert owned_store.current.pools == ()

def test_unowned_store_rejects_setters(store):
    with pytest.raises(Unauthorized):
        store.set_pools(OWNER, POOLS[:2])
    with pytest.raises(Unauthorized):
        store.set_thresholds(OWNER, 10, 10, 1)

def test_set_pools_replaces_whole_list(owned_store):
    owned_store.set_pools(OWNER, POOLS[:3])
    assert owned_store.current.pools == POOLS[:3]

    owned_store.set_pools(OWNER, [POOLS[5], POOLS[0]])
    assert owned_store.current.pools == (POOLS[5], POOLS[0])
    assert owned_store.current.primary_pool == POOLS[5]

def test_owner_match_ignores_address_case(owned_store):
    owned_store.set_pools(OWNER.upper().replace('0X', '0x'), POOLS[:1])
    assert owned_store.current.pools == POOLS[:1]

def test_pool_list_size_limits(owned_store):
    with pytest.raises(InvalidPoolList):
        owned_store.set_pools(OWNER, [])
    too_many = ['0x' + f'{i:040x}' for i in range(1, DetectionConfig.MAX_POOLS + 2)]
    with pytest.raises(InvalidPoolList):
        owned_store.set_pools(OWNER, too_many)
    with pytest.raises(InvalidPoolList):
        owned_store.set_pools(OWNER, POOLS[0])

    owned_store.set_pools(OWNER, too_many[:DetectionConfig.MAX_POOLS])
    assert len(owned_store.current.pools) == DetectionConfig.MAX_POOLS

@pytest.mark.parametrize('pools', [
    {POOLS[0]: 1, POOLS[1]: 2},
    [POOLS[0], None],
    [POOLS[0], ''],
    [POOLS[0], '   '],
    [POOLS[0], 42],
    [POOLS[0], POOLS[1], POOLS[0]],
    [POOLS[0], POOLS[0].upper().replace('0X', '0x')],
])
def test_pool_entries_must_be_distinct_identifiers(owned_store, pools):
    before = owned_store.current
    with pytest.raises(InvalidPoolList):
        owned_store.set_pools(OWNER, pools)
    assert owned_store.current is before

def test_thresholds_are_permissive_within_storage_width(owned_store):
    owned_store.set_thresholds(OWNER, 0, 0, 0)
    config = owned_store.current
    assert (config.drop_threshold_pct, config.compensation_threshold_pct, config.confirm_blocks) == (0, 0, 0)

    # Values above 100 are accepted
    owned_store.set_thresholds(OWNER, 250, DetectionConfig.UINT16_MAX, 7)
    config = owned_store.current
    assert config.drop_threshold_pct == 250
    assert config.compensation_threshold_pct == DetectionConfig.UINT16_MAX
    assert config.confirm_blocks == 7

@pytest.mark.parametrize('values', [
    (DetectionConfig.UINT16_MAX + 1, 10, 1),
    (10, -1, 1),
    (10, 10, 1.5),
    (True, 10, 1),
])
def test_thresholds_outside_storage_width_are_rejected(owned_store, values):
    before = owned_store.current
    with pytest.raises(InvalidThreshold):
        owned_store.set_thresholds(OWNER, *values)
    assert owned_store.current is before

def test_min_total_liquidity(owned_store):
    owned_store.set_min_total_liquidity(OWNER, DetectionConfig.UINT256_MAX)
    assert owned_store.current.min_total_liquidity == DetectionConfig.UINT256_MAX

    with pytest.raises(InvalidThreshold):
        owned_store.set_min_total_liquidity(OWNER, DetectionConfig.UINT256_MAX + 1)
    with pytest.raises(Unauthorized):
        owned_store.set_min_total_liquidity(OTHER, 5)

def test_listeners_receive_change_notifications(owned_store):
    events = []
    owned_store.add_listener(lambda event, config: events.append((event, config.pools)))

    owned_store.set_pools(OWNER, POOLS[:2])
    owned_store.set_thresholds(OWNER, 20, 30, 2)

    assert events == [('pools_updated', POOLS[:2]), ('thresholds_updated', POOLS[:2])]

def test_failing_listener_does_not_undo_update(owned_store):
    def broken(event, config):
        raise RuntimeError("listener down")

    owned_store.add_listener(broken)
    owned_store.set_pools(OWNER, POOLS[:2])
    assert owned_store.current.pools == POOLS[:2]

def test_readers_keep_a_complete_config(owned_store):
    owned_store.set_pools(OWNER, POOLS[:2])
    seen = owned_store.current

    owned_store.set_pools(OWNER, POOLS[2:5])

    assert seen.pools == POOLS[:2]
    assert owned_store.current.pools == POOLS[2:5]

def test_concurrent_readers_never_see_partial_pool_lists(owned_store):
    lists = [POOLS[:2], POOLS[2:6]]
    owned_store.set_pools(OWNER, lists[0])
    observed = set()
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            observed.add(owned_store.current.pools)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for i in range(200):
        owned_store.set_pools(OWNER, lists[i % 2])
    stop.set()
    for t in threads:
        t.join()

    assert observed <= set(lists)

def test_config_dict_round_trip():
    config = TrapConfig(pools=POOLS[:2], drop_threshold_pct=40, compensation_threshold_pct=50,
                        min_total_liquidity=10 ** 40, confirm_blocks=3, owner=OWNER)
    data = config.to_dict()
    assert data['min_total_liquidity'] == str(10 ** 40)
    assert TrapConfig.from_dict(data) == config

if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, '-v']))
