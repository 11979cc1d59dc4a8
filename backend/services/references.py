"""
Chantiers Console - Vérification des références

Un chantier référence un client et un template de projet sans les posséder.
Ces contrôles sont faits AVANT la création; le service chantier ne les refait pas.
"""

from pymongo.errors import PyMongoError

from services.errors import NotFoundError, TransientStoreError


async def _ensure_exists(collection, kind: str, ref_id: str) -> dict:
    try:
        doc = await collection.find_one({"id": ref_id}, {"_id": 0})
    except PyMongoError as e:
        raise TransientStoreError(f"lecture {kind} {ref_id}: {e}") from e
    if not doc:
        raise NotFoundError(kind, ref_id)
    return doc


async def ensure_client_exists(db, client_id: str) -> dict:
    """Retourne le document client ou lève NotFoundError"""
    return await _ensure_exists(db.clients, "Client", client_id)


async def ensure_project_exists(db, project_template_id: str) -> dict:
    """Retourne le template de projet (collection `projects`) ou lève NotFoundError"""
    return await _ensure_exists(db.projects, "Template", project_template_id)
