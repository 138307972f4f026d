# Deployment settings, read from the environment

import os

# Kafka (Bitquery streams)
username = os.environ.get('KAFKA_USERNAME', '')
password = os.environ.get('KAFKA_PASSWORD', '')
bootstrap_servers = os.environ.get(
    'KAFKA_BOOTSTRAP_SERVERS',
    'rpk0.bitquery.io:9092,rpk1.bitquery.io:9092,rpk2.bitquery.io:9092'
)
topic = os.environ.get('KAFKA_TOPIC', 'eth.dexpools.proto')

# Chain access
rpc_url = os.environ.get('RPC_URL', 'http://localhost:8545')

# 'kafka' drives cycles from the block stream, 'rpc' polls the node
block_source = os.environ.get('BLOCK_SOURCE', 'kafka').lower()
# 'rpc' queries pool contracts, 'stream' reads reserves seen on the Kafka stream
liquidity_source = os.environ.get('LIQUIDITY_SOURCE', 'rpc').lower()
poll_interval_seconds = float(os.environ.get('POLL_INTERVAL_SECONDS', '12'))

# Alert sink / admin API
api_url = os.environ.get('API_URL', 'http://localhost:5001')
enable_api = os.environ.get('ENABLE_API', 'true').lower() == 'true'

# Initial pool list when running without the API (index 0 is the primary)
trap_pools = [p.strip() for p in os.environ.get('TRAP_POOLS', '').split(',') if p.strip()]

# Bearer token for admin endpoints; the admin API refuses every mutation when unset
admin_token = os.environ.get('ADMIN_TOKEN', '')
