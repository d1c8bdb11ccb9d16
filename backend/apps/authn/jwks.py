"""
Signing key lookup for JWT validation.

Public keys come from the identity provider's JWKS endpoint and are
cached for KC_JWKS_CACHE_TTL seconds. An unknown key id triggers one
early refresh (key rotation), debounced so a flood of bad tokens cannot
hammer the endpoint.
"""
import logging
import threading
import time
from typing import Any, Dict, Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

ROTATION_DEBOUNCE_SECONDS = 5


class JWKSCache:
    """Thread-safe kid -> JWK mapping with TTL-based refresh."""

    def __init__(self, jwks_url: str, cache_ttl: int = 600, timeout: float = 10):
        self.jwks_url = jwks_url
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self._keys: Dict[str, Dict[str, Any]] = {}
        self._fetched_at: float = 0
        self._lock = threading.RLock()

    def _refresh(self) -> None:
        logger.debug(f"Fetching JWKS from {self.jwks_url}")
        try:
            response = requests.get(self.jwks_url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            logger.error(f"Failed to fetch JWKS: {e}")
            raise

        self._keys = {k['kid']: k for k in payload.get('keys', []) if k.get('kid')}
        self._fetched_at = time.time()
        logger.info(f"Fetched {len(self._keys)} keys from JWKS endpoint")

    def _age(self) -> float:
        return time.time() - self._fetched_at

    def get_key(self, kid: str) -> Optional[Dict[str, Any]]:
        """
        Return the JWK for kid, or None if the provider does not know it.

        Raises:
            requests.RequestException: If the JWKS endpoint is unreachable
        """
        with self._lock:
            if not self._keys or self._age() >= self.cache_ttl:
                self._refresh()
            elif kid not in self._keys and self._age() > ROTATION_DEBOUNCE_SECONDS:
                logger.info(f"Key {kid} not cached, refreshing JWKS for key rotation")
                self._refresh()

            key = self._keys.get(kid)
            if key is None:
                logger.warning(f"Key {kid} not found in JWKS")
            return key

    def clear(self):
        """Forget all cached keys."""
        with self._lock:
            self._keys = {}
            self._fetched_at = 0


_jwks_cache: Optional[JWKSCache] = None


def get_jwks_cache() -> JWKSCache:
    """Get the process-wide JWKS cache."""
    global _jwks_cache
    if _jwks_cache is None:
        _jwks_cache = JWKSCache(
            jwks_url=settings.KC_JWKS_URL,
            cache_ttl=settings.KC_JWKS_CACHE_TTL
        )
    return _jwks_cache
