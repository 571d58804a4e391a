"""
Trip progress invalidation events.

Downstream screens cache shipment details; every accepted stage change
publishes an event on Redis and drops the cached views for that shipment.
"""

import json
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)

PROGRESS_CHANNEL_PREFIX = "trip-progress:"

# Cached views keyed by shipment id
CACHED_SHIPMENT_KEYS = (
    "shipment:{shipment_id}:details",
    "shipment:{shipment_id}:assignments",
    "driver:{driver_id}:assignments",
)


def progress_channel(shipment_id: int) -> str:
    return f"{PROGRESS_CHANNEL_PREFIX}{shipment_id}"


async def publish_progress_changed(redis, shipment_id: int, driver_id: int, payload: Dict[str, Any]) -> bool:
    """
    Publish a progress change and invalidate cached shipment views.

    Returns:
        True if published, False if Redis was unavailable (logged, not raised)
    """
    try:
        keys = [key.format(shipment_id=shipment_id, driver_id=driver_id) for key in CACHED_SHIPMENT_KEYS]
        await redis.delete(*keys)
        await redis.publish(progress_channel(shipment_id), json.dumps(payload, default=str))
        return True
    except Exception:
        logger.warning("Progress event for shipment %s not published", shipment_id, exc_info=True)
        return False
