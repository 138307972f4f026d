"""
Liquidity sources queried by the snapshot collector.
A source exposes get_reserves() (paired reserves) and/or liquidity() (single figure).
RPC sources call pool contracts over JSON-RPC; stream sources read reserves seen on Kafka.
"""

import logging
import threading
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

import requests

from detection_config import DetectionConfig

# getReserves() -> (uint112 reserve0, uint112 reserve1, uint32 blockTimestampLast)
GET_RESERVES_SELECTOR = '0x0902f1ac'
# liquidity() -> uint128
LIQUIDITY_SELECTOR = '0x1a686502'
WORD_SIZE = 32

logger = logging.getLogger(__name__)

class RpcError(Exception):
    """JSON-RPC error response (includes contract reverts)"""

    def __init__(self, message: str, code: Optional[int] = None, data=None):
        super().__init__(message)
        self.code = code
        self.data = data

# ============================================================================
# Helper Functions
# ============================================================================

def convert_bytes_to_hex(value) -> str:
    """Convert bytes to hexadecimal string"""
    return '0x' + value.hex()

def convert_bytes_to_int(value):
    """Convert bytes to integer (big-endian)"""
    if isinstance(value, bytes):
        return int.from_bytes(value, byteorder='big')
    return int(value)

def decode_words(result: str, count: int) -> Tuple[int, ...]:
    """Decode the first `count` 32-byte ABI words of an eth_call result"""
    if not isinstance(result, str) or not result.startswith('0x'):
        raise ValueError(f"Unexpected eth_call result: {result!r}")
    raw = bytes.fromhex(result[2:])
    if len(raw) < count * WORD_SIZE:
        raise ValueError(f"eth_call returned {len(raw)} bytes, expected at least {count * WORD_SIZE}")
    return tuple(
        int.from_bytes(raw[i * WORD_SIZE:(i + 1) * WORD_SIZE], byteorder='big')
        for i in range(count)
    )

def amount_to_int(raw) -> int:
    """Stream amounts arrive as raw bytes (native units) or as numbers"""
    if isinstance(raw, bytes):
        return convert_bytes_to_int(raw)
    if isinstance(raw, (float, int)) and not isinstance(raw, bool):
        return max(0, int(raw))
    return 0

# ============================================================================
# JSON-RPC
# ============================================================================

class RpcClient:
    """Minimal Ethereum JSON-RPC client over requests"""

    def __init__(self, url: str, session: Optional[requests.Session] = None,
                 timeout: float = DetectionConfig.RPC_TIMEOUT_SECONDS):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout
        self._request_id = 0
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._id_lock:
            self._request_id += 1
            return self._request_id

    def call(self, method: str, params: list):
        payload = {
            'jsonrpc': '2.0',
            'id': self._next_id(),
            'method': method,
            'params': params,
        }
        response = self.session.post(
            self.url,
            json=payload,
            headers={'Content-Type': 'application/json'},
            timeout=self.timeout
        )
        response.raise_for_status()
        data = response.json()
        if 'error' in data and data['error']:
            err = data['error']
            if isinstance(err, dict):
                raise RpcError(err.get('message', 'rpc error'), code=err.get('code'), data=err.get('data'))
            raise RpcError(str(err))
        return data.get('result')

    def eth_call(self, to: str, data: str, block: str = 'latest') -> str:
        return self.call('eth_call', [{'to': to, 'data': data}, block])

    def block_number(self) -> int:
        return int(self.call('eth_blockNumber', []), 16)

    def latest_block(self) -> Tuple[int, int]:
        """(height, timestamp) of the latest block"""
        block = self.call('eth_getBlockByNumber', ['latest', False])
        if not block:
            raise RpcError("Node returned no latest block")
        return int(block['number'], 16), int(block['timestamp'], 16)

class RpcPoolSource:
    """Pool contract queried through eth_call"""

    def __init__(self, address: str, client: RpcClient):
        self.address = address
        self.client = client

    def get_reserves(self) -> Tuple[int, int]:
        reserve0, reserve1 = decode_words(self.client.eth_call(self.address, GET_RESERVES_SELECTOR), 2)
        return reserve0, reserve1

    def liquidity(self) -> int:
        (value,) = decode_words(self.client.eth_call(self.address, LIQUIDITY_SELECTOR), 1)
        return value

    def __repr__(self):
        return f"RpcPoolSource({self.address})"

# ============================================================================
# Kafka-fed reserves
# ============================================================================

class StreamPoolSource:
    """Paired reserves last seen on the DEX pool stream"""

    def __init__(self, address: str, book: 'PoolReserveBook'):
        self.address = address
        self.book = book

    def get_reserves(self) -> Tuple[int, int]:
        reserves = self.book.reserves(self.address)
        if reserves is None:
            raise LookupError(f"No reserves seen yet for {self.address}")
        return reserves

    def __repr__(self):
        return f"StreamPoolSource({self.address})"

class PoolReserveBook:
    """Latest (amount_a, amount_b) per watched pool address from DexPoolBlockMessage events"""

    def __init__(self, pools: Iterable[str] = ()):
        self._reserves: Dict[str, Tuple[int, int]] = {}
        self._watched: FrozenSet[str] = frozenset()
        self._lock = threading.Lock()
        self.watch(pools)

    def watch(self, pools: Iterable[str]):
        """Track only these pools, dropping reserves of pools no longer watched"""
        watched = frozenset(p.lower() for p in pools)
        with self._lock:
            self._watched = watched
            self._reserves = {k: v for k, v in self._reserves.items() if k in watched}

    def apply_block(self, dex_pool_block) -> int:
        """Record reserves of watched pools from a block message, returns events applied"""
        applied = 0
        for pool_event in dex_pool_block.PoolEvents:
            try:
                pool = pool_event.Pool
                liquidity = pool_event.Liquidity
                if not hasattr(pool, 'SmartContract') or not pool.SmartContract:
                    continue
                pool_address = convert_bytes_to_hex(pool.SmartContract).lower()
                amount_a = amount_to_int(liquidity.AmountCurrencyA if hasattr(liquidity, 'AmountCurrencyA') else 0)
                amount_b = amount_to_int(liquidity.AmountCurrencyB if hasattr(liquidity, 'AmountCurrencyB') else 0)
                with self._lock:
                    if pool_address not in self._watched:
                        continue
                    self._reserves[pool_address] = (amount_a, amount_b)
                applied += 1
            except Exception as err:
                logger.error(f"Error processing pool event: {err}", exc_info=True)
        return applied

    def reserves(self, pool_address: str) -> Optional[Tuple[int, int]]:
        with self._lock:
            return self._reserves.get(pool_address.lower())

    def source(self, pool_address: str) -> StreamPoolSource:
        return StreamPoolSource(pool_address, self)

    def __len__(self):
        with self._lock:
            return len(self._reserves)
