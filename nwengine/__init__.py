"""
nwengine package
~~~~~~~~~~~~~~~~

General-purpose neural network engine over arbitrary unit graphs.
Contains the unit graph and its editing API, forward evaluation,
back-propagation training, the binary network file format, the
random generator used for weights and shuffling, and text drivers.
"""

from .errors import ErrorCode, NetworkError, error_message
from .network import Network
from .rand import Rand32
from .unit import IODef, Unit, UnitKind

__version__ = "1.0.0"

__all__ = [
    'ErrorCode',
    'IODef',
    'Network',
    'NetworkError',
    'Rand32',
    'Unit',
    'UnitKind',
    'error_message',
]
