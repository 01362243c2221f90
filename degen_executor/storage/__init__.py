from .gateway import RedisClaimJournal
from .settings import StorageSettings

__all__ = [
    "RedisClaimJournal",
    "StorageSettings",
]
