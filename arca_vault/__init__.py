__version__ = "0.1.0"

from arca_vault.core import (
    BaseAdapter,
    VaultEngineError,
)

__all__ = [
    "__version__",
    "BaseAdapter",
    "VaultEngineError",
]
