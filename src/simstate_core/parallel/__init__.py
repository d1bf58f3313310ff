# src/simstate_core/parallel/__init__.py
from .exceptions import CommunicationError
from .communicator import Communicator, SerialCommunicator, ThreadCommunicator, run_on_ranks
from .tasks import split_range, parallel_map, parallel_reduce

__all__ = [
    # Exceptions
    "CommunicationError",
    # Communicators
    "Communicator",
    "SerialCommunicator",
    "ThreadCommunicator",
    "run_on_ranks",
    # Task parallelism
    "split_range",
    "parallel_map",
    "parallel_reduce",
]
