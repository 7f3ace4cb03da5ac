"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for scalar network training.

This module provides endpoints for:
- Creating and managing networks held in memory
- Training networks with real-time progress updates via WebSockets
- Running predictions against a network
- Rendering the prediction surface of two-input networks

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for cooperative background training tasks
- Matplotlib for surface images
"""

import os
import math
import sys
import time
import uuid
import base64
import logging
from io import BytesIO
from typing import Any, Dict, List

import gevent
import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from scalarnet.datasets import XOR_DATASET, is_valid_dataset, is_valid_vector
from scalarnet.network import Network

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('scalarnet').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

is_production = os.getenv('FLASK_ENV') == 'production'

socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

ACTIVE_JOB_STATUSES = ('pending', 'training')

# Finished jobs stay queryable for this long before cleanup removes them
JOB_RETENTION_SECONDS = 3600

# Emit a progress event every this many epochs
REPORT_EVERY = 1000

SURFACE_RESOLUTION = 25

# Request limits. A forward pass re-reads every input once per path through
# the graph, so its cost is the product of the layer sizes.
MAX_HIDDEN_LAYERS = 4
MAX_LAYER_SIZE = 16
MAX_GRAPH_PATHS = 10000


def is_network_busy(network_id: str) -> bool:
    """True while a pending or running job owns the network's weights."""
    return any(
        job['network_id'] == network_id
        and job.get('status') in ACTIVE_JOB_STATUSES
        for job in training_jobs.values()
    )


def describe_network(network_id: str, include_weights: bool = False) -> Dict[str, Any]:
    """Build the JSON description of an in-memory network."""
    info = active_networks[network_id]
    net = info['network']
    description = {
        'network_id': network_id,
        'sizes': net.sizes,
        'learning_rate': net.learning_rate,
        'trained': info['trained'],
        'loss': info['loss'],
        'busy': is_network_busy(network_id)
    }
    if include_weights:
        description['weights'] = net.weights()
    return description


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

_cleanup_task_started = False


def cleanup_finished_training_jobs(max_age: float = JOB_RETENTION_SECONDS) -> int:
    """
    Remove completed or failed training jobs older than ``max_age`` seconds.

    Returns:
        int: Number of jobs removed
    """
    finished_statuses = {'completed', 'failed'}
    now = time.time()
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
        and now - job_info.get('finished_at', now) >= max_age
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")
    return len(jobs_to_remove)


def cleanup_task() -> None:
    """Background loop removing stale training jobs every hour."""
    while True:
        try:
            cleanup_finished_training_jobs()
        except Exception as e:
            logger.exception(f"Error during job cleanup: {e}")
        gevent.sleep(3600)


def start_cleanup_task() -> None:
    """
    Start the background cleanup task.

    This function is idempotent - calling it multiple times has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs every hour)")
    gevent.spawn(cleanup_task)


# Start the cleanup task when module is loaded (works with gunicorn)
start_cleanup_task()


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and counts of networks and active jobs."""
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in ACTIVE_JOB_STATUSES
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network.

    Request body (all optional):
        {
            'input_size': 2,
            'output_size': 1,
            'hidden_layers_count': 1,
            'learning_rate': 0.5,
            'seed': 42
        }

    Returns:
        JSON with network_id, sizes, and status
    """
    data = request.get_json(silent=True) or {}
    input_size = data.get('input_size', 2)
    output_size = data.get('output_size', 1)
    hidden_layers_count = data.get('hidden_layers_count', 1)
    learning_rate = data.get('learning_rate', 0.5)
    seed = data.get('seed')

    if (
        not isinstance(learning_rate, (int, float))
        or isinstance(learning_rate, bool)
        or not math.isfinite(learning_rate)
    ):
        return jsonify({'error': 'learning_rate must be a positive number'}), 400
    if seed is not None and (
        not isinstance(seed, int) or isinstance(seed, bool) or seed < 0
    ):
        return jsonify({'error': 'seed must be a non-negative integer'}), 400

    limits = (
        ('input_size', input_size, MAX_LAYER_SIZE),
        ('output_size', output_size, MAX_LAYER_SIZE),
        ('hidden_layers_count', hidden_layers_count, MAX_HIDDEN_LAYERS),
    )
    for name, value, limit in limits:
        if isinstance(value, (int, float)) and not isinstance(value, bool) \
                and value > limit:
            logger.warning(f"Rejected network with {name}={value}")
            return jsonify({'error': f'{name} must be at most {limit}'}), 400

    try:
        net = Network(
            input_size,
            output_size,
            hidden_layers_count=hidden_layers_count,
            learning_rate=float(learning_rate),
            rng=seed
        )
    except ValueError as e:
        logger.warning(f"Invalid network requested: {e}")
        return jsonify({'error': str(e)}), 400

    if math.prod(net.sizes) > MAX_GRAPH_PATHS:
        logger.warning(f"Rejected network with sizes {net.sizes}: too many paths")
        return jsonify({
            'error': f'network {net.sizes} exceeds {MAX_GRAPH_PATHS} '
                     'input-to-output paths'
        }), 400

    network_id = str(uuid.uuid4())
    active_networks[network_id] = {
        'network': net,
        'trained': False,
        'loss': None
    }

    logger.info(f"Created network {network_id} with sizes {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'sizes': net.sizes,
        'status': 'created'
    }), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all networks held in memory."""
    networks = [describe_network(nid) for nid in active_networks]
    logger.debug(f"Listing {len(networks)} networks")
    return jsonify({'networks': networks}), 200


@app.route('/api/networks/<network_id>', methods=['GET'])
def get_network(network_id: str):
    """Return one network including its edge weights."""
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404
    return jsonify(describe_network(network_id, include_weights=True)), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from memory."""
    if network_id not in active_networks:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    if is_network_busy(network_id):
        return jsonify({'error': 'Network is training'}), 409

    del active_networks[network_id]
    logger.info(f"Deleted network {network_id}")

    return jsonify({'network_id': network_id, 'deleted': True}), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete every network that is not currently training."""
    idle_ids = [nid for nid in active_networks if not is_network_busy(nid)]
    for network_id in idle_ids:
        del active_networks[network_id]

    skipped = len(active_networks)
    logger.info(f"Deleted {len(idle_ids)} network(s), skipped {skipped} busy")

    return jsonify({
        'deleted_count': len(idle_ids),
        'skipped_busy': skipped,
        'message': f'Successfully deleted {len(idle_ids)} network(s)'
    }), 200


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Run a forward pass.

    Request body:
        {'input': [0, 1]}

    Returns:
        JSON with input and prediction
    """
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404
    if is_network_busy(network_id):
        return jsonify({'error': 'Network is training'}), 409

    net = active_networks[network_id]['network']
    data = request.get_json(silent=True) or {}
    values = data.get('input')

    if not is_valid_vector(values, len(net.input_layer)):
        return jsonify({
            'error': f'input must be a list of {len(net.input_layer)} numbers'
        }), 400

    prediction = net.predict(values)
    return jsonify({
        'network_id': network_id,
        'input': values,
        'prediction': prediction
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body (all optional):
        {
            'epochs': 10000,
            'dataset': [[[0, 0], [0]], [[0, 1], [1]], ...]  # defaults to XOR
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404
    if is_network_busy(network_id):
        return jsonify({'error': 'Network is already training'}), 409

    net = active_networks[network_id]['network']
    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', 10000)
    dataset = data.get('dataset', XOR_DATASET)

    if not isinstance(epochs, int) or isinstance(epochs, bool) or epochs < 1:
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if not is_valid_dataset(dataset, len(net.input_layer), len(net.output_layer)):
        return jsonify({
            'error': 'dataset must be a list of [input, expected] pairs '
                     f'sized {len(net.input_layer)} and {len(net.output_layer)}'
        }), 400

    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={epochs}, examples={len(dataset)}"
    )

    socketio.start_background_task(
        train_network_task, network_id, job_id, epochs, dataset
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    epochs: int,
    dataset: List[Any]
) -> None:
    """
    Background task that trains a network.

    Sends progress updates via WebSocket as training progresses.
    """
    net = active_networks[network_id]['network']

    def on_progress(data: Dict[str, Any]) -> None:
        """Called every REPORT_EVERY epochs to send progress updates."""
        progress = (data['epoch'] / data['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress
        training_jobs[job_id]['loss'] = data['loss']

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'loss': data['loss'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress
        })
        gevent.sleep(0)

    def yield_to_other_tasks():
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")
        training_jobs[job_id]['status'] = 'training'

        net.train(
            dataset,
            epochs,
            callback=on_progress,
            yield_func=yield_to_other_tasks,
            report_every=REPORT_EVERY
        )

        loss = net.evaluate(dataset)

        active_networks[network_id]['trained'] = True
        active_networks[network_id]['loss'] = loss

        training_jobs[job_id].update({
            'status': 'completed',
            'progress': 100,
            'loss': loss,
            'finished_at': time.time()
        })

        logger.info(f"Training completed for job {job_id}: loss {loss:.6f}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'loss': loss,
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id].update({
            'status': 'failed',
            'error': str(e),
            'finished_at': time.time()
        })

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id not in training_jobs:
        logger.warning(f"Status requested for non-existent job: {job_id}")
        return jsonify({'error': 'Training job not found'}), 404

    return jsonify({'job_id': job_id, **training_jobs[job_id]}), 200


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def prediction_grid(net: Network, resolution: int = SURFACE_RESOLUTION) -> np.ndarray:
    """
    Evaluate a two-input network over ``[0, 1] x [0, 1]``.

    Returns:
        ``(resolution, resolution)`` array, rows indexed by the second input
    """
    axis = np.linspace(0.0, 1.0, resolution)
    grid = np.empty((resolution, resolution))
    for row, y in enumerate(axis):
        for col, x in enumerate(axis):
            grid[row, col] = net.predict([float(x), float(y)])[0]
    return grid


def create_surface_image(grid: np.ndarray, title: str) -> str:
    """
    Create a base64-encoded PNG heat map of a prediction grid.

    Args:
        grid: 2D array of predictions over the unit square
        title: Figure title

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(4, 4))
    plt.imshow(grid, origin='lower', extent=(0, 1, 0, 1),
               cmap='viridis', vmin=0.0, vmax=1.0)
    plt.colorbar()
    plt.title(title)
    plt.xlabel('input 0')
    plt.ylabel('input 1')

    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


@app.route('/api/networks/<network_id>/surface', methods=['GET'])
def get_surface(network_id: str):
    """Render the prediction surface of a two-input, one-output network."""
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404
    if is_network_busy(network_id):
        return jsonify({'error': 'Network is training'}), 409

    net = active_networks[network_id]['network']
    if len(net.input_layer) != 2 or len(net.output_layer) != 1:
        return jsonify({
            'error': 'Surface is only available for 2-input, 1-output networks'
        }), 400

    grid = prediction_grid(net)
    return jsonify({
        'network_id': network_id,
        'resolution': SURFACE_RESOLUTION,
        'image_data': create_surface_image(grid, f'Network {net.sizes}')
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8000))

    if is_production:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    start_cleanup_task()

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_production,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
