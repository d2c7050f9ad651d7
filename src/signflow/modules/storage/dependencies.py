from functools import lru_cache

from signflow.config import settings
from signflow.modules.storage.services.content_store import ContentStore, LocalContentStore


@lru_cache(maxsize=1)
def get_content_store() -> ContentStore:
    return LocalContentStore(settings.STORAGE_ROOT)
