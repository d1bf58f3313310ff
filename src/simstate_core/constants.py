# --- src/simstate_core/constants.py ---
import logging

logger = logging.getLogger(__name__)

# --- Persistence ---

#: Version string written at the head of every System file produced by this package.
#: Readers accept any version that starts with FILE_VERSION_PREFIX.
FILE_VERSION_PREFIX: str = "simstate"
FILE_VERSION: str = "simstate-1.0"

#: Version string identifying the legacy single-stream layout, in which vectors are
#: named inline with the data instead of being listed in the header.
LEGACY_FILE_VERSION: str = "simstate-legacy-0.9"

#: Maximum number of DOF-bearing entities (nodes or elements) gathered to the writer
#: in one collective during serialized I/O. Bounds both message count and root memory.
DEFAULT_IO_BLOCK_SIZE: int = 256000

# --- Reserved vector names ---

SOLUTION_NAME: str = "solution"
CURRENT_LOCAL_SOLUTION_NAME: str = "current_local_solution"
#: Names taken by the store's own vectors; auxiliary vectors cannot use them.
RESERVED_VECTOR_NAMES = (SOLUTION_NAME, CURRENT_LOCAL_SOLUTION_NAME)

# --- Indexed vector family names ---
# A family member is stored as a regular managed vector named "<family>_<index>".

ADJOINT_SOLUTION_FAMILY: str = "adjoint_solution"
ADJOINT_RHS_FAMILY: str = "adjoint_rhs"
SENSITIVITY_SOLUTION_FAMILY: str = "sensitivity_solution"
SENSITIVITY_RHS_FAMILY: str = "sensitivity_rhs"
WEIGHTED_SENSITIVITY_ADJOINT_SOLUTION_FAMILY: str = "weighted_sensitivity_adjoint_solution"
#: The weighted sensitivity solution is a single, unindexed vector.
WEIGHTED_SENSITIVITY_SOLUTION_NAME: str = "weighted_sensitivity_solution"

# --- Parallel execution ---

#: Seconds a rank waits inside an in-process collective before the whole group is aborted.
DEFAULT_COLLECTIVE_TIMEOUT_S: float = 60.0

logger.debug("Defined core constants: FILE_VERSION, DEFAULT_IO_BLOCK_SIZE, family names")
