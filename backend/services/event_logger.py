"""
Chantiers Console - Event Logger

Journal d'audit des actions sensibles sur les chantiers.
Une seule fonction, appelée par les routes après une mutation réussie.
La mutation est déjà persistée: un échec d'écriture du journal est loggé,
jamais remonté à l'appelant.
"""

import logging

from pymongo.errors import PyMongoError

from config import new_id, now_iso

logger = logging.getLogger("event_logger")


async def log_event(
    event_log,
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    related: dict = None
) -> bool:
    """
    Write a single event to the event_log collection.

    Args:
        event_log: collection motor `event_log`
        action: e.g. chantier_create, phase_progress, phase_blocked, team_add
        entity_type: chantier | phase | team_member | progress_update | photo
        entity_id: ID of the primary entity
        user: ID of the actor performing the action
        details: free-form dict (progress, old_value, new_value, etc.)
        related: linked entity IDs (chantier_id, client_id, phase_id, etc.)

    Returns:
        True si l'événement est écrit, False si le store l'a refusé
    """
    try:
        await event_log.insert_one({
            "id": new_id(),
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "user": user,
            "details": details or {},
            "related": related or {},
            "created_at": now_iso()
        })
    except PyMongoError as e:
        logger.error(f"[EVENT] {action} {entity_type}:{entity_id} non journalisé: {e}")
        return False
    logger.debug(f"[EVENT] {action} {entity_type}:{entity_id} by={user}")
    return True
