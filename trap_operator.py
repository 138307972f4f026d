"""
Trap operator.
Runs one cycle per block: collect a snapshot, keep a short window of recent
snapshots, evaluate the two most recent and forward alerts to the API.
"""

import signal
import time
import logging
from collections import deque
from typing import Callable, Iterator, Optional, Tuple

import requests

import config
from detection_config import DetectionConfig
from liquidity_migration_detector import AlertPayload, format_alert, send_alert_to_api, should_respond
from liquidity_sources import PoolReserveBook, RpcClient, RpcError, RpcPoolSource
from snapshot_collector import collect
from trap_config import ConfigStore, TrapConfig

logger = logging.getLogger(__name__)

# ============================================================================
# Configuration loading
# ============================================================================

def fetch_trap_config(api_url: str, timeout: float = 2) -> TrapConfig:
    """Read the current trap configuration from the API server"""
    response = requests.get(f'{api_url}/api/config', timeout=timeout)
    response.raise_for_status()
    return TrapConfig.from_dict(response.json())

# ============================================================================
# Block sources
# ============================================================================

class RpcBlockPoller:
    """Polls the node and yields each new (height, timestamp) once"""

    def __init__(self, client: RpcClient, interval: float = config.poll_interval_seconds,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.interval = interval
        self.sleep = sleep
        self.running = False
        self.last_height: Optional[int] = None

    def stop(self):
        self.running = False

    def blocks(self) -> Iterator[Tuple[int, int]]:
        self.running = True
        while self.running:
            try:
                height, timestamp = self.client.latest_block()
                if self.last_height is None or height > self.last_height:
                    self.last_height = height
                    yield height, timestamp
            except (RpcError, requests.exceptions.RequestException, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Could not read latest block: {e}")
            if self.running:
                self.sleep(self.interval)

# ============================================================================
# Operator
# ============================================================================

class TrapOperator:
    """External scheduler around the collector and the evaluator"""

    def __init__(self, config_loader: Callable[[], TrapConfig], resolve_source: Callable,
                 api_url: str = config.api_url, enable_api: bool = config.enable_api,
                 sample_interval: int = DetectionConfig.SAMPLE_INTERVAL_BLOCKS,
                 window_size: int = DetectionConfig.SNAPSHOT_WINDOW,
                 max_workers: Optional[int] = None,
                 sender: Callable = send_alert_to_api,
                 reserve_book: Optional[PoolReserveBook] = None):
        self.config_loader = config_loader
        self.resolve_source = resolve_source
        self.api_url = api_url
        self.enable_api = enable_api
        self.sample_interval = sample_interval
        self.max_workers = max_workers
        self.sender = sender
        self.reserve_book = reserve_book
        # Newest first: window[0] is the latest snapshot
        self.window = deque(maxlen=max(2, window_size))
        self.trap_config: Optional[TrapConfig] = None
        self.cycle_count = 0
        self.alert_count = 0

    def load_config(self) -> TrapConfig:
        """Fresh configuration, or the last known one when loading fails"""
        try:
            self.trap_config = self.config_loader()
        except Exception as e:
            if self.trap_config is None:
                logger.warning(f"Could not load trap config ({e}), using defaults")
                self.trap_config = TrapConfig()
            else:
                logger.warning(f"Could not load trap config ({e}), keeping last known config")
        if self.reserve_book is not None:
            self.reserve_book.watch(self.trap_config.pools)
        return self.trap_config

    def run_cycle(self, block_height: int, timestamp: int) -> Optional[AlertPayload]:
        """Collect and evaluate at one block, returns the alert payload if triggered"""
        if self.window and block_height - self.window[0].block_height < self.sample_interval:
            return None

        trap_config = self.load_config()
        snapshot = collect(trap_config, block_height, timestamp, self.resolve_source, self.max_workers)
        self.window.appendleft(snapshot)
        self.cycle_count += 1

        trigger, payload = should_respond(list(self.window), trap_config)
        if not trigger:
            return None

        self.alert_count += 1
        print(format_alert(payload))
        logger.warning(
            f"ALERT #{self.alert_count}: primary pool {payload.primary_pool} dropped "
            f"{payload.drop_pct}% at block {payload.block_height}"
        )
        if self.enable_api:
            self.sender(payload, self.api_url, logger)
        return payload

    def run(self, block_feed) -> None:
        poll_count = 0
        for block_height, timestamp in block_feed.blocks():
            poll_count += 1
            try:
                self.run_cycle(block_height, timestamp)
            except Exception as err:
                logger.error(f"Error in trap cycle at block {block_height}: {err}", exc_info=True)

            if poll_count % DetectionConfig.HEARTBEAT_EVERY_POLLS == 0:
                logger.info(
                    f"Heartbeat: {poll_count} blocks seen, {self.cycle_count} snapshots collected, "
                    f"{self.alert_count} alerts, latest block {block_height}"
                )

# ============================================================================
# Main
# ============================================================================

def main():
    """Main execution"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - [%(levelname)s] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    client = RpcClient(config.rpc_url)
    book = PoolReserveBook()

    if config.block_source == 'kafka':
        from consumer_dex_pools import KafkaBlockFeed
        block_feed = KafkaBlockFeed(book)
    else:
        block_feed = RpcBlockPoller(client)
        if config.liquidity_source == 'stream':
            logger.warning("LIQUIDITY_SOURCE=stream needs BLOCK_SOURCE=kafka, pools will report 0")

    if config.liquidity_source == 'stream':
        resolve_source = book.source
    else:
        resolve_source = lambda pool: RpcPoolSource(pool, client)

    if config.enable_api:
        config_loader = lambda: fetch_trap_config(config.api_url)
        logger.info(f"API integration enabled: {config.api_url}")
    else:
        store = ConfigStore(TrapConfig(pools=tuple(config.trap_pools[:DetectionConfig.MAX_POOLS])))
        config_loader = lambda: store.current

    reserve_book = book if config.liquidity_source == 'stream' else None
    operator = TrapOperator(config_loader, resolve_source, reserve_book=reserve_book)
    # Watch the configured pools before the first block message arrives
    operator.load_config()

    def signal_handler(signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info(f"Received signal {signum}, initiating shutdown...")
        block_feed.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(f"Starting liquidity migration trap (blocks: {config.block_source}, liquidity: {config.liquidity_source})")
    logger.info("Press Ctrl+C to stop\n")

    try:
        operator.run(block_feed)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.exception(f"Error in main loop: {e}")
    finally:
        logger.info(f"Shutdown complete. Snapshots: {operator.cycle_count}, Alerts: {operator.alert_count}")

if __name__ == "__main__":
    main()
