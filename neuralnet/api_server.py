"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for network training.

This module provides endpoints for:
- Creating networks from a JSON configuration
- Training networks on posted examples with real-time progress updates
- Running predictions
- Saving and loading trained parameters through the SQLite store

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for cooperative background training tasks
- Matplotlib (Agg backend) to render training error curves
"""

import os
import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional

import gevent
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

# Local imports
from neuralnet.config import NetworkConfig, model_dir_from_env
from neuralnet.exceptions import ConfigurationError, ShapeMismatchError
from neuralnet.network import Network, TrainingExample
from neuralnet.model_persistence import (
    get_store,
    load_training,
    list_saved_trainings,
    delete_training,
    delete_old_trainings
)

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
        logging.getLogger('neuralnet').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

MODEL_DIR = model_dir_from_env()

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

is_production = os.getenv('FLASK_ENV') == 'production'

# SocketIO enables real-time communication (WebSockets) for training updates
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


def restore_network(network_id: str) -> Optional[Network]:
    """
    Rebuild a saved network from the metadata stored with its parameters.

    Returns:
        The network with its parameters loaded, or None if not stored
    """
    snapshot = load_training(network_id, MODEL_DIR)
    if snapshot is None:
        return None

    config = NetworkConfig.from_dict(snapshot.get('meta_data') or {})
    config.training_name = network_id
    net = Network.from_config(config, store=get_store(MODEL_DIR))
    net.restore(snapshot)
    return net


def reload_saved_networks() -> None:
    """
    Reload all saved trainings from the database into memory.

    Called at startup so networks saved before a restart are available
    again. History blobs and snapshots that cannot be rebuilt are skipped.
    """
    saved_trainings = list_saved_trainings(MODEL_DIR)

    if not saved_trainings:
        logger.info("No saved trainings to reload")
        return

    loaded_count = 0
    for info in saved_trainings:
        network_id = info['training_name']
        if len(info['architecture']) < 2:
            continue
        try:
            net = restore_network(network_id)
        except (ConfigurationError, ShapeMismatchError) as e:
            logger.warning(f"Skipping training {network_id}: {e}")
            continue

        if net is None:
            logger.warning(f"Failed to load training {network_id}")
            continue

        active_networks[network_id] = {
            'network': net,
            'architecture': net.sizes,
            'trained': True,
            'error': None
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


reload_saved_networks()

# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False


def cleanup_old_trainings_task() -> None:
    """
    Background task that runs on startup, then every 24 hours to:
    - Delete trainings older than 2 days from the database
    - Remove completed/failed training jobs from memory
    """
    logger.info("Cleanup task started")

    while True:
        deleted_count = delete_old_trainings(days=2, model_dir=MODEL_DIR)

        if deleted_count > 0:
            logger.info(f"Cleanup completed: deleted {deleted_count} training(s)")
        elif deleted_count == 0:
            logger.info("Cleanup completed: no old trainings found to delete")
        else:
            logger.error("Cleanup returned error code")

        cleanup_finished_training_jobs()

        logger.info("Next cleanup scheduled in 24 hours")
        gevent.sleep(86400)


def cleanup_finished_training_jobs() -> None:
    """
    Remove completed or failed training jobs from memory.

    Only removes jobs that are no longer active.
    """
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


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
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_trainings_task)


# ============================================================================
# API ENDPOINTS
# ============================================================================

def _get_active(network_id: str) -> Optional[Dict[str, Any]]:
    info = active_networks.get(network_id)
    if info is None:
        logger.warning(f"Request for non-existent network: {network_id}")
    return info


@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and counts of networks and running jobs."""
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
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

    Request body:
        {
            'sizes': [2, 3, 1],
            'learning_rate': 0.15,
            'epochs': 10000,
            'activation': 'sigmoid',       # optional
            'error_threshold': 0.01,       # optional
            'training_name': 'xor',        # optional, defaults to a uuid
            'seed': 42                     # optional
        }

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    network_id = data.get('training_name') or str(uuid.uuid4())

    config = NetworkConfig.from_dict({**data, 'training_name': network_id})
    try:
        net = Network.from_config(config, store=get_store(MODEL_DIR))
    except ConfigurationError as e:
        logger.warning(f"Invalid configuration requested: {e}")
        return jsonify({'error': str(e), 'field': e.field}), 400

    active_networks[network_id] = {
        'network': net,
        'architecture': net.sizes,
        'trained': False,
        'error': None
    }

    logger.info(f"Created network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'config': net.meta_data,
        'status': 'created'
    }), 201


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body:
        {
            'examples': [{'inputs': [0, 1], 'targets': [1]}, ...],
            'save': true    # optional, store parameters when done
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    info = _get_active(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    raw_examples = data.get('examples')
    if not isinstance(raw_examples, list) or not raw_examples:
        return jsonify({'error': 'examples must be a non-empty list'}), 400

    net: Network = info['network']
    try:
        examples = net.check_examples(raw_examples)
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({'error': f'Invalid examples: {e}'}), 400

    save = bool(data.get('save', True))
    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': net.epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"{len(examples)} examples, epochs={net.epochs}, lr={net.learning_rate}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task, network_id, job_id, examples, save
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    examples: List[TrainingExample],
    save: bool = True
) -> None:
    """
    Background task that trains a network.

    Sends progress updates via WebSocket as training progresses.
    """
    net: Network = active_networks[network_id]['network']

    def on_epoch_complete(data: Dict[str, Any]) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (data['epoch'] / data['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'mean_error': data['mean_error'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress
        })

    try:
        logger.info(f"Starting training for job {job_id}")

        # Let HTTP requests be processed between epochs
        def yield_to_other_tasks():
            gevent.sleep(0)

        net.train(
            examples,
            callback=on_epoch_complete,
            yield_func=yield_to_other_tasks
        )

        error = net.evaluate(examples)

        active_networks[network_id]['trained'] = True
        active_networks[network_id]['error'] = error

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['error'] = error
        training_jobs[job_id]['progress'] = 100

        if save:
            net.save_training()

        logger.info(f"Training completed for job {job_id}: mean error {error:.4f}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'error': float(error),
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

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
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Run a forward pass.

    Request body:
        {'inputs': [1, 0]}

    Returns:
        JSON with the output vector
    """
    info = _get_active(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    inputs = data.get('inputs')
    if not isinstance(inputs, list):
        return jsonify({'error': 'inputs must be a list of numbers'}), 400

    try:
        outputs = info['network'].predict(inputs)
    except ShapeMismatchError as e:
        return jsonify({'error': str(e)}), 400
    except TypeError as e:
        return jsonify({'error': f'inputs must be numbers: {e}'}), 400

    return jsonify({
        'network_id': network_id,
        'inputs': inputs,
        'outputs': array_to_float_list(outputs)
    }), 200


@app.route('/api/networks/<network_id>/save', methods=['POST'])
def save_network_endpoint(network_id: str):
    """Store the network's current parameters under its training name."""
    info = _get_active(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    try:
        info['network'].save_training()
    except Exception as e:
        logger.exception(f"Error saving network {network_id}: {e}")
        return jsonify({'error': 'Failed to save network'}), 500

    return jsonify({'network_id': network_id, 'saved': True}), 200


@app.route('/api/networks/<network_id>/load', methods=['POST'])
def load_network_endpoint(network_id: str):
    """Replace the network's parameters with the stored ones."""
    info = _get_active(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    try:
        loaded = info['network'].load_training()
    except ShapeMismatchError as e:
        return jsonify({'error': str(e)}), 409

    if not loaded:
        return jsonify({
            'network_id': network_id,
            'loaded': False,
            'error': 'No saved training found'
        }), 404

    info['trained'] = True
    return jsonify({'network_id': network_id, 'loaded': True}), 200


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'error': info['error'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    in_memory_ids = set(active_networks.keys())
    saved_only = []
    for training in list_saved_trainings(MODEL_DIR):
        # History blobs carry no architecture
        if len(training['architecture']) < 2:
            continue
        if training['training_name'] not in in_memory_ids:
            training['network_id'] = training['training_name']
            training['status'] = 'saved'
            saved_only.append(training)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    deleted_from_memory = False
    if network_id in active_networks:
        del active_networks[network_id]
        deleted_from_memory = True

    deleted_from_disk = delete_training(network_id, MODEL_DIR)
    delete_training(f"{network_id}_history", MODEL_DIR)

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete all networks from both memory and disk."""
    in_memory_ids = list(active_networks.keys())
    saved_ids = [t['training_name'] for t in list_saved_trainings(MODEL_DIR)]
    all_ids = list(set(in_memory_ids + saved_ids))

    deleted_from_memory_count = 0
    deleted_from_disk_count = 0

    for network_id in all_ids:
        if network_id in active_networks:
            del active_networks[network_id]
            deleted_from_memory_count += 1

        if delete_training(network_id, MODEL_DIR):
            deleted_from_disk_count += 1

    logger.info(
        f"Deleted all networks: {len(all_ids)} total, "
        f"{deleted_from_memory_count} from memory, {deleted_from_disk_count} from disk"
    )

    return jsonify({
        'deleted_count': len(all_ids),
        'deleted_from_memory': deleted_from_memory_count,
        'deleted_from_disk': deleted_from_disk_count,
        'message': f'Successfully deleted {len(all_ids)} network(s)'
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_trainings_endpoint():
    """
    Manually trigger cleanup of trainings older than specified days.

    Request body (optional):
        {'days': 2}  # defaults to 2
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', 2)

    if isinstance(days, bool) or not isinstance(days, (int, float)) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_trainings(days=int(days), model_dir=MODEL_DIR)

    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    logger.info(f"Manual cleanup: deleted {deleted_count} training(s) older than {days} day(s)")

    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Successfully deleted {deleted_count} training(s) older than {days} day(s)'
    }), 200


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(values) -> List[float]:
    """Convert a vector to a list of floats (for JSON serialization)."""
    return [float(val) for val in values]


def create_error_plot(epoch_errors: List[float], title: str) -> str:
    """
    Create a base64-encoded PNG of the per-epoch mean error.

    Args:
        epoch_errors: Mean absolute error of each epoch
        title: Plot title

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(5, 3))
    plt.plot(range(1, len(epoch_errors) + 1), epoch_errors)
    plt.xlabel('Epoch')
    plt.ylabel('Mean absolute error')
    plt.title(title)
    plt.grid(True, alpha=0.3)

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


@app.route('/api/networks/<network_id>/error_plot', methods=['GET'])
def get_error_plot(network_id: str):
    """Return the training error curve of the last ``train`` run."""
    info = _get_active(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    epoch_errors = info['network'].epoch_errors
    if not epoch_errors:
        return jsonify({'error': 'Network has not been trained'}), 404

    return jsonify({
        'network_id': network_id,
        'epochs': len(epoch_errors),
        'final_error': epoch_errors[-1],
        'image_data': create_error_plot(epoch_errors, f"Training {network_id}")
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    is_cloud = bool(os.environ.get('PORT'))
    port = int(os.environ.get('PORT', 8000))

    if is_cloud:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    start_cleanup_task()

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_cloud,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
