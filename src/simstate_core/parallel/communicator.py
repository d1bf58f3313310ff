# src/simstate_core/parallel/communicator.py
"""
Defines the explicit communicator contract used by every collective operation.

No operation in this package reaches for process-wide communicator state. Each
collective (`System.update_global_solution`, the ghost exchange of the projection,
serialized gather/scatter I/O) receives a `Communicator` as an argument.

The protocol mirrors the lower-case, object-based API of `mpi4py.MPI.Comm`, so an
mpi4py communicator can be passed wherever a `Communicator` is expected. Two
implementations ship with the package:

- `SerialCommunicator`: a single rank; every collective is the identity.
- `ThreadCommunicator`: one of `size` ranks living as threads in the same process,
  created by `run_on_ranks`. It gives real collective semantics (blocking, every rank
  must participate, payloads are copied) without an MPI installation.
"""
import copy
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Protocol, Sequence, runtime_checkable

from ..constants import DEFAULT_COLLECTIVE_TIMEOUT_S
from .exceptions import CommunicationError

logger = logging.getLogger(__name__)


@runtime_checkable
class Communicator(Protocol):
    """The collective operations this package relies on."""
    rank: int
    size: int

    def barrier(self) -> None:
        ...

    def bcast(self, obj: Any, root: int = 0) -> Any:
        ...

    def gather(self, obj: Any, root: int = 0) -> Optional[List[Any]]:
        ...

    def allgather(self, obj: Any) -> List[Any]:
        ...

    def scatter(self, objs: Optional[Sequence[Any]], root: int = 0) -> Any:
        ...

    def alltoall(self, objs: Sequence[Any]) -> List[Any]:
        ...


class SerialCommunicator:
    """A communicator for a single process. Every collective returns its own input."""
    rank = 0
    size = 1

    def barrier(self) -> None:
        pass

    def bcast(self, obj: Any, root: int = 0) -> Any:
        return obj

    def gather(self, obj: Any, root: int = 0) -> Optional[List[Any]]:
        return [obj]

    def allgather(self, obj: Any) -> List[Any]:
        return [obj]

    def scatter(self, objs: Optional[Sequence[Any]], root: int = 0) -> Any:
        return objs[0]

    def alltoall(self, objs: Sequence[Any]) -> List[Any]:
        return [objs[0]]

    def __repr__(self):
        return "SerialCommunicator()"


class _ThreadWorld:
    """Shared rendezvous state for a group of in-process ranks."""
    def __init__(self, size: int, timeout: float):
        self.size = size
        self.timeout = timeout
        self.barrier = threading.Barrier(size)
        self.slots: List[Any] = [None] * size

    def abort(self):
        self.barrier.abort()


class ThreadCommunicator:
    """
    One rank of an in-process group. Every collective is a two-phase rendezvous:
    all ranks deposit their payload, wait, read every slot, and wait again before
    the slots may be reused. Received payloads are deep copies, as they would be
    after a real message transfer.
    """
    def __init__(self, world: _ThreadWorld, rank: int):
        self._world = world
        self.rank = rank
        self.size = world.size

    def _wait(self):
        try:
            self._world.barrier.wait(self._world.timeout)
        except threading.BrokenBarrierError as e:
            raise CommunicationError(
                rank=self.rank,
                details="The group barrier was broken while this rank was waiting in a collective."
            ) from e

    def _exchange(self, payload: Any) -> List[Any]:
        self._world.slots[self.rank] = payload
        self._wait()
        received = copy.deepcopy(self._world.slots)
        self._wait()
        return received

    def barrier(self) -> None:
        self._wait()

    def bcast(self, obj: Any, root: int = 0) -> Any:
        return self._exchange(obj if self.rank == root else None)[root]

    def gather(self, obj: Any, root: int = 0) -> Optional[List[Any]]:
        received = self._exchange(obj)
        return received if self.rank == root else None

    def allgather(self, obj: Any) -> List[Any]:
        return self._exchange(obj)

    def scatter(self, objs: Optional[Sequence[Any]], root: int = 0) -> Any:
        if self.rank == root and (objs is None or len(objs) != self.size):
            self._world.abort()
            raise CommunicationError(rank=self.rank, details=f"scatter on root needs exactly {self.size} payloads.")
        return self._exchange(objs if self.rank == root else None)[root][self.rank]

    def alltoall(self, objs: Sequence[Any]) -> List[Any]:
        if len(objs) != self.size:
            self._world.abort()
            raise CommunicationError(rank=self.rank, details=f"alltoall needs exactly {self.size} payloads, got {len(objs)}.")
        received = self._exchange(list(objs))
        return [received[src][self.rank] for src in range(self.size)]

    def __repr__(self):
        return f"ThreadCommunicator(rank={self.rank}, size={self.size})"


def run_on_ranks(
    size: int,
    fn: Callable[..., Any],
    *args,
    timeout: float = DEFAULT_COLLECTIVE_TIMEOUT_S,
    **kwargs
) -> List[Any]:
    """
    Runs `fn(comm, *args, **kwargs)` once per rank of a fresh in-process group.

    If any rank raises, the group barrier is aborted so that ranks blocked in a
    collective fail with `CommunicationError` instead of hanging. The first
    root-cause exception (one that is not a `CommunicationError`) is re-raised.

    Returns:
        The per-rank return values, indexed by rank.
    """
    if size < 1:
        raise ValueError(f"A communicator group needs at least one rank, got {size}.")
    world = _ThreadWorld(size, timeout)
    comms = [ThreadCommunicator(world, rank) for rank in range(size)]

    def _target(comm: ThreadCommunicator):
        try:
            return fn(comm, *args, **kwargs)
        except BaseException:
            world.abort()
            raise

    logger.debug(f"Launching {size} in-process rank(s) for '{getattr(fn, '__name__', fn)}'.")
    with ThreadPoolExecutor(max_workers=size, thread_name_prefix="rank") as executor:
        futures = [executor.submit(_target, comm) for comm in comms]
        errors = [future.exception() for future in futures]

    failures = [e for e in errors if e is not None]
    if failures:
        root_causes = [e for e in failures if not isinstance(e, CommunicationError)]
        first = root_causes[0] if root_causes else failures[0]
        logger.error(f"{len(failures)} of {size} rank(s) failed; re-raising: {first!r}")
        raise first
    return [future.result() for future in futures]
