"""
Entity Gateway

Single-entity reads and writes against the REST API, keeping the entity
store in step with what the server returns.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from application.entity import EntityType, SyncedEntity, entity_class_for
from application.services.resources import resource_for
from application.store.entity_store import EntityStore
from common.service.api_client import ApiClient, ApiResponse

logger = logging.getLogger(__name__)


def parse_entity(entity_type: EntityType, data: Any) -> Optional[SyncedEntity]:
    """Validate server JSON into an entity, or None if it is not a full snapshot."""
    if not isinstance(data, dict):
        return None
    try:
        return entity_class_for(entity_type).model_validate(data)
    except PydanticValidationError as e:
        logger.debug(f"Incomplete {entity_type.value} snapshot: {e.error_count()} errors")
        return None


def _items(data: Any) -> List[Any]:
    """Accept both a bare list and a paged result ``{"items": [...]}``."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"]
    return []


class EntityGateway:
    """Fetch, load, patch and delete single entities."""

    def __init__(self, api_client: ApiClient, store: EntityStore):
        self.api_client = api_client
        self.store = store

    async def fetch(self, entity_type: EntityType, entity_id: str) -> Optional[SyncedEntity]:
        """
        Point fetch of one entity; the store is updated with the result.

        A 404 removes the entity from the store. Other failures are logged and
        leave the store untouched.

        Returns:
            The fresh entity, or None if it could not be fetched
        """
        resource = resource_for(entity_type)
        response = await self.api_client.get(resource.item_path(entity_id))

        if not response.success:
            if response.status_code == 404:
                logger.info(f"{entity_type.value} {entity_id} no longer exists on the server")
                self.store.remove(entity_type, entity_id)
            else:
                logger.warning(
                    f"Failed to fetch {entity_type.value} {entity_id}: {response.message}"
                )
            return None

        entity = parse_entity(entity_type, response.data)
        if entity is None:
            logger.warning(f"Server returned an incomplete {entity_type.value} {entity_id}")
            return None

        self.store.upsert(entity)
        return entity

    async def load(
        self, entity_type: EntityType, params: Optional[Dict[str, Any]] = None
    ) -> List[SyncedEntity]:
        """
        Load a page of entities into the store.

        Raises:
            SyncClientError: If the request fails
        """
        resource = resource_for(entity_type)
        response = await self.api_client.get(resource.collection_path, params=params)
        if not response.success:
            raise response.error()

        loaded: List[SyncedEntity] = []
        for item in _items(response.data):
            entity = parse_entity(entity_type, item)
            if entity is None:
                logger.warning(f"Skipping malformed {entity_type.value} in list response")
                continue
            self.store.upsert(entity)
            loaded.append(entity)

        logger.info(f"Loaded {len(loaded)} {entity_type.value} entities")
        return loaded

    async def patch_fields(
        self, entity_type: EntityType, entity_id: str, fields: Dict[str, Any]
    ) -> ApiResponse:
        resource = resource_for(entity_type)
        return await self.api_client.patch(resource.item_path(entity_id), fields)

    async def delete(self, entity_type: EntityType, entity_id: str) -> ApiResponse:
        resource = resource_for(entity_type)
        return await self.api_client.delete(resource.item_path(entity_id))
