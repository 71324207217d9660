# Cache module
from impress_service.cache.cache_manager import cache_manager, generate_composition_key
from impress_service.cache.cache_store import CacheStore
