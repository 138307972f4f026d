# Consumer for ETH DEX Pools Kafka stream
# Each DexPoolBlockMessage is one block: its pool events refresh the reserve book
# and its header drives one trap cycle

import uuid
import logging
from typing import Iterator, Optional, Tuple

from confluent_kafka import Consumer, KafkaError, KafkaException
from google.protobuf.message import DecodeError
from evm import dex_pool_block_message_pb2

import config
from liquidity_sources import PoolReserveBook

logger = logging.getLogger(__name__)

def build_consumer_conf() -> dict:
    """Kafka consumer configuration"""
    group_id_suffix = uuid.uuid4().hex
    return {
        'bootstrap.servers': config.bootstrap_servers,
        'group.id': f'{config.username}-liquidity-trap-{group_id_suffix}',
        'session.timeout.ms': 30000,
        'security.protocol': 'SASL_PLAINTEXT',
        'ssl.endpoint.identification.algorithm': 'none',
        'sasl.mechanisms': 'SCRAM-SHA-512',
        'sasl.username': config.username,
        'sasl.password': config.password,
        'auto.offset.reset': 'latest',
    }

def block_position(dex_pool_block) -> Optional[Tuple[int, int]]:
    """(block height, block timestamp) from the message header, None if absent"""
    header = dex_pool_block.Header if hasattr(dex_pool_block, 'Header') else None
    if header is None or not hasattr(header, 'Number') or not header.Number:
        return None
    timestamp = int(header.Time) if hasattr(header, 'Time') else 0
    return int(header.Number), timestamp

class KafkaBlockFeed:
    """Yields one (height, timestamp) per block message, feeding the reserve book on the way"""

    def __init__(self, book: PoolReserveBook, consumer: Optional[Consumer] = None, topic: str = config.topic):
        self.book = book
        self.topic = topic
        self.conf = build_consumer_conf()
        self.consumer = consumer or Consumer(self.conf)
        self.running = False
        self.processed_count = 0
        self.decode_error_count = 0

    def stop(self):
        self.running = False

    def process_message(self, buffer) -> Optional[Tuple[int, int]]:
        """Decode a block message, update reserves and return its block position"""
        try:
            dex_pool_block = dex_pool_block_message_pb2.DexPoolBlockMessage()
            dex_pool_block.ParseFromString(buffer)
        except DecodeError as err:
            self.decode_error_count += 1
            buffer_size = len(buffer) if buffer else 0
            if self.decode_error_count <= 3 or self.decode_error_count % 10 == 0:
                logger.warning(f"Protobuf decoding error (count: {self.decode_error_count}, buffer size: {buffer_size} bytes): {err}")
            return None

        applied = self.book.apply_block(dex_pool_block)
        self.processed_count += 1
        if self.processed_count == 1 or self.processed_count % 100 == 0:
            logger.info(f"Received message #{self.processed_count} with {applied} pool events, {len(self.book)} pools in reserve book")

        position = block_position(dex_pool_block)
        if position is None:
            logger.debug("Block message without header, skipping cycle")
        return position

    def blocks(self) -> Iterator[Tuple[int, int]]:
        self.consumer.subscribe([self.topic])
        self.running = True
        logger.info(f"Starting consumer for topic: {self.topic}")
        logger.info(f"Consumer group ID: {self.conf['group.id']}")
        try:
            while self.running:
                msg = self.consumer.poll(timeout=1.0)

                if msg is None:
                    continue

                if msg.error():
                    if msg.error().code() == KafkaError._PARTITION_EOF:
                        logger.debug("Reached end of partition")
                        continue
                    else:
                        logger.error(f"Kafka error: {msg.error()}")
                        raise KafkaException(msg.error())

                position = self.process_message(msg.value())
                if position is not None:
                    yield position
        finally:
            self.consumer.close()
            logger.info(f"Consumer closed. Messages processed: {self.processed_count}")
            if self.decode_error_count > 0:
                logger.info(f"Total decode errors: {self.decode_error_count}")
