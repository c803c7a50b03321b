"""
Pipedrive Client

Thin async client over the Pipedrive REST API covering what the deal
bridge needs: organization / person / user lookups, deal field key
resolution and custom field writes.

Lookups fail soft (return None and log) so one missing entity does not
abort the whole deal. Writes raise ``CrmError`` so the webhook stays
unprocessed and is retried on redelivery.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

import httpx

from menubill.src.billing.shared.exceptions import ConfigMissingError, CrmError

logger = logging.getLogger(__name__)


class PipedriveClient:
    """
    Pipedrive API client.

    Args:
        http: Shared httpx client, owned by the caller
        api_token: Pipedrive API token
        base_url: API host, e.g. https://api.pipedrive.com
        field_cache_seconds: How long deal field keys are cached
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_token: str,
        base_url: str = "https://api.pipedrive.com",
        field_cache_seconds: int = 30 * 60,
    ):
        self._http = http
        self._api_token = api_token
        self._base_url = base_url.rstrip("/")
        self._field_cache_seconds = field_cache_seconds
        self._field_cache: Dict[str, Tuple[float, Optional[str]]] = {}

    @property
    def configured(self) -> bool:
        return bool(self._api_token)

    def _headers(self) -> Dict[str, str]:
        if not self._api_token:
            raise ConfigMissingError("PIPEDRIVE_API_TOKEN")
        return {"x-api-token": self._api_token, "Accept": "application/json"}

    async def _get(self, path: str) -> Optional[Any]:
        try:
            response = await self._http.get(f"{self._base_url}{path}", headers=self._headers())
        except httpx.HTTPError as e:
            logger.warning(f"[PIPEDRIVE] GET {path} failed: {e}")
            return None
        if response.status_code != 200:
            logger.warning(f"[PIPEDRIVE] GET {path} returned {response.status_code}")
            return None
        return response.json().get("data")

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_organization(self, org_id: int | str) -> Optional[Dict[str, Any]]:
        data = await self._get(f"/api/v2/organizations/{org_id}")
        if not data or not data.get("name"):
            return None
        return {"id": data.get("id"), "name": data["name"]}

    async def get_person(self, person_id: int | str) -> Optional[Dict[str, Any]]:
        data = await self._get(f"/api/v2/persons/{person_id}")
        if not data or not data.get("name"):
            return None
        return {
            "id": data.get("id"),
            "name": data["name"],
            "emails": data.get("emails") or [],
            "phones": data.get("phones") or [],
        }

    async def get_user(self, user_id: int | str) -> Optional[Dict[str, Any]]:
        data = await self._get(f"/v1/users/{user_id}")
        if not data or not data.get("email"):
            return None
        return {"id": data.get("id"), "name": data.get("name"), "email": data["email"]}

    async def get_deal_field_key(self, field_name: str) -> Optional[str]:
        """
        Resolve a custom deal field's API key from its display name.

        Results (including misses) are cached per client instance.
        """
        cached = self._field_cache.get(field_name)
        if cached and time.monotonic() - cached[0] < self._field_cache_seconds:
            return cached[1]

        fields = await self._get("/v1/dealFields")
        if fields is None:
            return None

        for field in fields:
            if field.get("name") and field.get("key"):
                self._field_cache[field["name"]] = (time.monotonic(), field["key"])
        if field_name not in self._field_cache:
            self._field_cache[field_name] = (time.monotonic(), None)
        return self._field_cache[field_name][1]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def update_deal_custom_fields(self, deal_id: int | str, fields: Dict[str, str]) -> None:
        """
        Write custom field values on a deal in one request.

        Raises:
            CrmError: transport failure or non-2xx response
        """
        path = f"/api/v2/deals/{deal_id}"
        try:
            response = await self._http.patch(
                f"{self._base_url}{path}",
                headers=self._headers(),
                json={"custom_fields": fields},
            )
        except httpx.HTTPError as e:
            logger.error(f"[PIPEDRIVE] Updating deal {deal_id} failed: {e}")
            raise CrmError(f"Could not update deal {deal_id}") from e

        if response.status_code >= 300:
            logger.error(f"[PIPEDRIVE] Updating deal {deal_id} returned {response.status_code}: {response.text[:200]}")
            raise CrmError(f"Could not update deal {deal_id}", status=response.status_code)

        logger.info(f"[PIPEDRIVE] Updated deal {deal_id} fields {sorted(fields)}")
