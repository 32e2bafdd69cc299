"""
Service wiring dependencies
"""

from typing import Optional

from ..storage import StorageInterface, create_storage
from ..users import StorageUserDirectory
from ..balances import BalanceEngine
from ..config import get_config


class BalanceSystem:
    """Ledger store, user directory and balance engine wired together"""

    def __init__(self, storage: Optional[StorageInterface] = None):
        if storage is None:
            config = get_config()
            storage = create_storage(
                config.database_url,
                lock_timeout=config.lock_timeout_seconds,
                busy_timeout=config.sqlite_busy_timeout_seconds,
                pool_min_connections=config.database_pool_min,
                pool_max_connections=config.database_pool_max
            )

        self.storage = storage
        self.users = StorageUserDirectory(self.storage)
        self.engine = BalanceEngine(self.storage, self.users)

    def close(self) -> None:
        self.storage.close()


# Global balance system instance, built on first request
_balance_system: Optional[BalanceSystem] = None


# Dependency to get balance system
def get_balance_system() -> BalanceSystem:
    global _balance_system
    if _balance_system is None:
        _balance_system = BalanceSystem()
    return _balance_system
