"""
Flask API server for the liquidity migration trap
Alert sink: decodes alert payloads and republishes them as structured log records.
Administration: ownership claim and owner-gated configuration replacement,
authenticated with a deploy-time bearer token.
"""

from flask import Flask, jsonify, request
from flask_cors import CORS
from datetime import datetime, timezone
from typing import Dict, Optional
import hmac
import json
import logging
import threading
from collections import deque
import os

from detection_config import DetectionConfig
from liquidity_migration_detector import AlertPayload
from trap_config import AlreadyOwned, ConfigError, ConfigStore, TrapConfig, Unauthorized
import config

# Application root path for subpath deployment
APPLICATION_ROOT = os.environ.get('SCRIPT_NAME', '/liquidity-migration-trap')

app = Flask(__name__)
CORS(app)

app.config['APPLICATION_ROOT'] = APPLICATION_ROOT

logger = logging.getLogger(__name__)
# Published alert records; consumers index on primary_pool and block_height
alert_logger = logging.getLogger('liquidity_migration.alerts')

# In-memory storage for alerts
alerts_storage: deque = deque(maxlen=DetectionConfig.ALERT_STORAGE_SIZE)
alerts_lock = threading.Lock()

# Single authoritative trap configuration
config_store = ConfigStore(TrapConfig(pools=tuple(config.trap_pools[:DetectionConfig.MAX_POOLS])))

# Deploy-time admin secret; whoever presents it acts as the claimed owner
admin_token = config.admin_token

def publish_alert(payload: AlertPayload) -> Dict:
    """Republish a decoded payload as a structured record and keep it for the API"""
    record = payload.to_dict()
    record['received_at'] = datetime.now(timezone.utc).isoformat()
    alert_logger.warning(
        f"LiquidityMigrationAlert primary_pool={payload.primary_pool} block_height={payload.block_height} "
        f"{json.dumps(record, default=str)}"
    )
    with alerts_lock:
        alerts_storage.append(record)
    return record

def _bearer_token() -> str:
    auth = request.headers.get('Authorization', '')
    if not auth.lower().startswith('bearer '):
        return ''
    return auth[7:].strip()

def is_authenticated() -> bool:
    """Request carries the configured admin token"""
    token = _bearer_token()
    if not admin_token or not token:
        return False
    return hmac.compare_digest(token.encode(), admin_token.encode())

def caller_identity() -> Optional[str]:
    """Owner bound to the admin token, None for unauthenticated requests"""
    if not is_authenticated():
        return None
    return config_store.owner

def json_object() -> Optional[Dict]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None

def _parse_uint(value):
    """JSON ints pass through, decimal strings are accepted for u256 values"""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value

@app.errorhandler(ConfigError)
def handle_config_error(err):
    if isinstance(err, Unauthorized):
        status = 403
    elif isinstance(err, AlreadyOwned):
        status = 409
    else:
        status = 400
    logger.warning(f"Rejected admin operation: {type(err).__name__}: {err}")
    return jsonify({'error': type(err).__name__, 'message': str(err)}), status

# ============================================================================
# Alert sink
# ============================================================================

@app.route(f'{APPLICATION_ROOT}/api/alerts', methods=['POST'])
@app.route('/api/alerts', methods=['POST'])
def add_alert():
    """Add a new alert (called by the operator)"""
    data = json_object()
    if not data or 'payload' not in data:
        return jsonify({'error': 'No payload provided'}), 400

    try:
        payload = AlertPayload.from_wire(data['payload'])
    except (TypeError, ValueError) as e:
        return jsonify({'error': f'Invalid payload: {e}'}), 400

    record = publish_alert(payload)
    return jsonify({'success': True, 'alert_id': f"{record['primary_pool']}@{record['block_height']}"})

@app.route(f'{APPLICATION_ROOT}/api/alerts', methods=['GET'])
@app.route('/api/alerts', methods=['GET'])
def get_alerts():
    """Get alerts, optionally filtered by primary pool and block height"""
    pool_filter = request.args.get('pool', '').strip().lower()
    block_filter = request.args.get('block', type=int)
    limit = request.args.get('limit', type=int, default=100)

    with alerts_lock:
        alerts_list = list(alerts_storage)

    filtered = []
    for alert in alerts_list:
        if pool_filter and pool_filter not in alert.get('primary_pool', '').lower():
            continue
        if block_filter is not None and alert.get('block_height') != block_filter:
            continue
        filtered.append(alert)

    # Newest first
    filtered.sort(key=lambda x: (x.get('block_height', 0), x.get('received_at', '')), reverse=True)
    filtered = filtered[:limit]

    return jsonify({
        'alerts': filtered,
        'total': len(filtered),
        'total_all': len(alerts_list)
    })

@app.route(f'{APPLICATION_ROOT}/api/alerts/stats', methods=['GET'])
@app.route('/api/alerts/stats', methods=['GET'])
def get_stats():
    """Get statistics about alerts"""
    with alerts_lock:
        alerts_list = list(alerts_storage)

    by_pool = {}
    max_drop_pct = 0
    for alert in alerts_list:
        pool = alert.get('primary_pool', 'unknown')
        by_pool[pool] = by_pool.get(pool, 0) + 1
        max_drop_pct = max(max_drop_pct, alert.get('drop_pct', 0))

    return jsonify({
        'total_alerts': len(alerts_list),
        'by_pool': by_pool,
        'unique_pools': len(by_pool),
        'max_drop_pct': max_drop_pct,
    })

@app.route(f'{APPLICATION_ROOT}/api/pools', methods=['GET'])
@app.route('/api/pools', methods=['GET'])
def get_pools():
    """Get primary pools seen in alerts"""
    with alerts_lock:
        alerts_list = list(alerts_storage)

    pools = {}
    for alert in alerts_list:
        pool = alert.get('primary_pool', '')
        if not pool:
            continue
        if pool not in pools:
            pools[pool] = {
                'primary_pool': pool,
                'alert_count': 0,
                'last_block': 0,
            }
        pools[pool]['alert_count'] += 1
        pools[pool]['last_block'] = max(pools[pool]['last_block'], alert.get('block_height', 0))

    return jsonify({
        'pools': list(pools.values()),
        'total': len(pools)
    })

# ============================================================================
# Administration
# ============================================================================

@app.route(f'{APPLICATION_ROOT}/api/config', methods=['GET'])
@app.route('/api/config', methods=['GET'])
def get_config():
    """Get current configuration"""
    return jsonify(config_store.current.to_dict())

@app.route(f'{APPLICATION_ROOT}/api/owner/claim', methods=['POST'])
@app.route('/api/owner/claim', methods=['POST'])
def claim_owner():
    """First successful claim becomes the owner and is bound to the admin token"""
    if not is_authenticated():
        raise Unauthorized("Claiming ownership requires the admin token")
    data = json_object() or {}
    updated = config_store.claim_owner(data.get('candidate'))
    return jsonify({'success': True, 'config': updated.to_dict()})

@app.route(f'{APPLICATION_ROOT}/api/config/pools', methods=['PUT'])
@app.route('/api/config/pools', methods=['PUT'])
def update_pools():
    data = json_object()
    if not data or 'pools' not in data:
        return jsonify({'error': 'No pools provided'}), 400
    updated = config_store.set_pools(caller_identity(), data['pools'])
    return jsonify({'success': True, 'config': updated.to_dict()})

@app.route(f'{APPLICATION_ROOT}/api/config/thresholds', methods=['PUT'])
@app.route('/api/config/thresholds', methods=['PUT'])
def update_thresholds():
    """Replace all threshold values at once"""
    data = json_object()
    required_fields = ['drop_threshold_pct', 'compensation_threshold_pct', 'confirm_blocks']
    if not data:
        return jsonify({'error': 'No data provided'}), 400
    for field in required_fields:
        if field not in data:
            return jsonify({'error': f'Missing required field: {field}'}), 400

    updated = config_store.set_thresholds(
        caller_identity(),
        _parse_uint(data['drop_threshold_pct']),
        _parse_uint(data['compensation_threshold_pct']),
        _parse_uint(data['confirm_blocks']),
    )
    return jsonify({'success': True, 'config': updated.to_dict()})

@app.route(f'{APPLICATION_ROOT}/api/config/min-total-liquidity', methods=['PUT'])
@app.route('/api/config/min-total-liquidity', methods=['PUT'])
def update_min_total_liquidity():
    data = json_object()
    if not data or 'min_total_liquidity' not in data:
        return jsonify({'error': 'Missing required field: min_total_liquidity'}), 400
    updated = config_store.set_min_total_liquidity(caller_identity(), _parse_uint(data['min_total_liquidity']))
    return jsonify({'success': True, 'config': updated.to_dict()})

def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - [%(levelname)s] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger.info("Starting API server on http://localhost:5001")
    app.run(host='0.0.0.0', port=5001, threaded=True)

if __name__ == '__main__':
    main()
