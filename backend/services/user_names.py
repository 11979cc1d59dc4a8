"""
Chantiers Console - Résolution des noms d'utilisateurs

Un chantier référence des utilisateurs par ID opaque (chef, auteurs des
mises à jour, photographes...). Ce module traduit ces IDs en noms affichables.

- cache process, jamais invalidé (les noms sont stables sur une session)
- un seul lookup par ID, y compris entre deux lots qui se chevauchent
- jamais de nom vide: repli sur "Utilisateur (<8 premiers caractères>...)"
"""

import asyncio
import logging
from typing import Dict, Iterable, Optional, Set

from pymongo.errors import PyMongoError

from models.chantier import Chantier

logger = logging.getLogger("user_names")


def fallback_name(uid: str) -> str:
    return f"Utilisateur ({uid[:8]}...)"


def collect_user_ids(chantier: Chantier) -> Set[str]:
    """Tous les IDs utilisateur référencés par un chantier"""
    ids = {chantier.assigned_chef_id, chantier.created_by}
    ids.update(phase.updated_by for phase in chantier.phases)
    for member in chantier.team:
        ids.add(member.added_by)
        if member.user_id:
            ids.add(member.user_id)
    ids.update(photo.uploaded_by for photo in chantier.gallery)
    ids.update(update.created_by for update in chantier.updates)
    ids.discard("")
    return ids


class UserNameResolver:
    """
    Args:
        users_collection: collection motor `users` (documents {"id", "display_name", ...})
    """

    def __init__(self, users_collection):
        self.users = users_collection
        self._cache: Dict[str, str] = {}
        self._pending: Dict[str, asyncio.Future] = {}

    def get_user_name(self, uid: str) -> str:
        """Nom en cache ou repli, sans I/O"""
        return self._cache.get(uid) or fallback_name(uid)

    async def resolve_names(self, ids: Iterable[str]) -> Dict[str, str]:
        unique_ids = {uid for uid in ids if uid}
        missing = [uid for uid in unique_ids if uid not in self._cache]

        waiting = []
        for uid in missing:
            future = self._pending.get(uid)
            if future is None:
                future = asyncio.ensure_future(self._lookup(uid))
                self._pending[uid] = future
            waiting.append(future)

        if waiting:
            await asyncio.gather(*waiting)

        return {uid: self._cache.get(uid, fallback_name(uid)) for uid in unique_ids}

    async def _lookup(self, uid: str) -> None:
        try:
            name = await self._fetch_display_name(uid)
            if not name:
                logger.info(f"[USER_NAMES] {uid} introuvable ou sans nom, repli")
            self._cache[uid] = name or fallback_name(uid)
        except PyMongoError as e:
            logger.warning(f"[USER_NAMES] Lookup {uid} en échec: {e}")
            self._cache[uid] = fallback_name(uid)
        finally:
            self._pending.pop(uid, None)

    async def _fetch_display_name(self, uid: str) -> Optional[str]:
        user = await self.users.find_one({"id": uid}, {"_id": 0, "display_name": 1})
        if not user:
            return None
        return user.get("display_name")
