"""
conftest.py
~~~~~~~~~~~

Shared fixtures. ``MODEL_DIR`` is pointed at a throwaway directory before
any test imports the API server, so nothing is written to ./models.
"""

import os
import sys
import tempfile

import pytest

# Add repository root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

os.environ['MODEL_DIR'] = tempfile.mkdtemp(prefix='neuralnet-test-models-')

from neuralnet.model_persistence import InMemoryParameterStore  # noqa: E402
from neuralnet.network import Network  # noqa: E402


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture
def memory_store():
    return InMemoryParameterStore()


@pytest.fixture
def simple_network(memory_store):
    """A seeded 3-4-2 sigmoid network backed by an in-memory store."""
    return Network(
        [3, 4, 2],
        learning_rate=0.1,
        epochs=3,
        training_name="simple",
        seed=1,
        store=memory_store
    )


@pytest.fixture
def training_examples():
    """Ten random 3-in, 2-out examples with one-hot targets."""
    import numpy as np

    rng = np.random.default_rng(0)
    examples = []
    for i in range(10):
        targets = [0.0, 0.0]
        targets[i % 2] = 1.0
        examples.append({'inputs': rng.standard_normal(3).tolist(), 'targets': targets})
    return examples
