"""
datasets.py
~~~~~~~~~~~

Truth tables used by the demos and the convergence tests.
"""

XOR_DATA = [
    {'inputs': [0, 0], 'targets': [0]},
    {'inputs': [0, 1], 'targets': [1]},
    {'inputs': [1, 0], 'targets': [1]},
    {'inputs': [1, 1], 'targets': [0]},
]

AND_DATA = [
    {'inputs': [0, 0], 'targets': [0]},
    {'inputs': [0, 1], 'targets': [0]},
    {'inputs': [1, 0], 'targets': [0]},
    {'inputs': [1, 1], 'targets': [1]},
]

XOR_TRAINING = "XOR_TRAINING"
AND_TRAINING = "AND_TRAINING"

XOR_NETWORK_CONFIG = {
    'sizes': [2, 3, 1],
    'learning_rate': 0.15,
    'epochs': 10000,
    'error_threshold': 0.001,
}

AND_NETWORK_CONFIG = {
    'sizes': [2, 1],
    'learning_rate': 0.5,
    'epochs': 10,
    'activation': 'binary_step',
}
