"""
Cliente mínimo de la API HTTP del CMS (sin SDKs externos).

Requisitos cubiertos:
- requests
- rate-limit/backoff (429, 5xx, errores de conexión)
- endpoints: entity map, schema, lista por tipo, instancia individual, change feed
"""

from __future__ import annotations

import time
from typing import Any, Optional

import requests
from loguru import logger

from cms_mirror.shared.exceptions.sync import CmsApiError

from .types import EntityDescriptor


class CmsClient:
    """
    Cliente HTTP del CMS. Devuelve JSON ya decodificado.

    Importante:
    - No valida la forma de los documentos: eso lo hacen el catálogo y los drivers.
    - Las rutas relativas se resuelven contra base_url.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        entity_map_path: str = "/entity-map",
        schema_path: str = "/documentation_transformed/json",
        changes_path: str = "/changed-entities",
        timeout_s: int = 30,
        max_retries: int = 6,
        min_backoff_s: float = 0.8,
        max_backoff_s: float = 20.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._entity_map_path = entity_map_path
        self._schema_path = schema_path
        self._changes_path = changes_path
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return self._base_url

    def url_for(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        if not path_or_url.startswith("/"):
            path_or_url = "/" + path_or_url
        return f"{self._base_url}{path_or_url}"

    def fetch_entity_map(self) -> Any:
        """Lista de {entityName, singlePath, listPath}."""
        return self.get_json(self._entity_map_path)

    def fetch_schema(self) -> Any:
        """Documento OpenAPI/Swagger con las definiciones Schema_<Entidad>."""
        return self.get_json(self._schema_path)

    def fetch_list(self, descriptor: EntityDescriptor) -> Any:
        """Colección completa de un tipo de entidad."""
        return self.get_json(descriptor.list_url)

    def fetch_single(self, descriptor: EntityDescriptor, entity_id: Any) -> Any:
        """Una instancia por id."""
        return self.get_json(descriptor.single_url(entity_id))

    def fetch_changes(self) -> Any:
        """Batch de cambios desde el checkpoint implícito que mantiene el CMS."""
        return self.get_json(self._changes_path)

    def get_json(self, path_or_url: str) -> Any:
        return self._request_json("GET", self.url_for(path_or_url))

    def _sleep_for(self, attempt: int, retry_after: Optional[str]) -> float:
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                return self._min_backoff_s
        # Exponencial simple + jitter proporcional
        base = min(self._max_backoff_s, self._min_backoff_s * (2**attempt))
        return base + (0.15 * base)

    def _request_json(self, method: str, url: str) -> Any:
        """
        Request HTTP con backoff.

        Estrategia:
        - 429: respeta Retry-After si existe, si no exponencial con jitter simple.
        - 5xx y errores de conexión: exponencial con jitter.
        - 4xx (no 429): error inmediato (ruta/config mal).
        """
        headers = {"Accept": "application/json"}

        for attempt in range(self._max_retries + 1):
            try:
                resp = self._session.request(
                    method=method,
                    url=url,
                    headers=headers,
                    timeout=self._timeout_s,
                )
            except requests.RequestException as e:
                if attempt >= self._max_retries:
                    raise CmsApiError(
                        f"CMS inaccesible tras {attempt} reintentos: {e}", url=url
                    ) from e
                sleep_s = self._sleep_for(attempt, None)
                logger.warning(f"Error de conexión con el CMS ({e}); reintentando en {sleep_s:.1f}s")
                time.sleep(sleep_s)
                continue

            if 200 <= resp.status_code < 300:
                try:
                    return resp.json()
                except ValueError as e:
                    raise CmsApiError(
                        f"Respuesta no JSON desde {url}", status_code=resp.status_code, url=url
                    ) from e

            # Errores recuperables
            if resp.status_code == 429 or 500 <= resp.status_code < 600:
                if attempt >= self._max_retries:
                    raise CmsApiError(
                        f"CMS error {resp.status_code} tras {attempt} reintentos: {resp.text}",
                        status_code=resp.status_code,
                        url=url,
                    )

                sleep_s = self._sleep_for(attempt, resp.headers.get("Retry-After"))
                logger.debug(f"CMS respondió {resp.status_code} en {url}; reintento en {sleep_s:.1f}s")
                time.sleep(sleep_s)
                continue

            # Errores no recuperables
            raise CmsApiError(
                f"CMS request falló {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
                url=url,
            )

        raise CmsApiError(f"CMS request sin respuesta: {url}", url=url)
