"""k1s0 lock service library."""

from .config import LockServiceConfig
from .context import clear_lock_context, current_lock_context, hash_instance_id
from .exceptions import LockServiceError, LockServiceErrorCodes, LockValidationError
from .factory import create_lock_manager, create_lock_service
from .loader import load_config
from .logger import new_logger
from .manager import LockManager
from .memory import InMemoryLockService
from .models import LockAction, LockOutcome, LockRecord, LockResult
from .service import LockService

__all__ = [
    "InMemoryLockService",
    "LockAction",
    "LockManager",
    "LockOutcome",
    "LockRecord",
    "LockResult",
    "LockService",
    "LockServiceConfig",
    "LockServiceError",
    "LockServiceErrorCodes",
    "LockValidationError",
    "clear_lock_context",
    "create_lock_manager",
    "create_lock_service",
    "current_lock_context",
    "hash_instance_id",
    "load_config",
    "new_logger",
]
