"""
Chantiers Console - Dépendances FastAPI

L'authentification est assurée en amont par le fournisseur d'identité:
il transmet l'ID de l'acteur dans l'en-tête X-User-Id.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException

import config
from services.chantier_directory import ChantierDirectory
from services.chantier_service import ChantierService
from services.user_names import UserNameResolver

# Un seul résolveur par process: son cache vit aussi longtemps que lui
_user_name_resolver: Optional[UserNameResolver] = None


def get_database():
    return config.db


async def get_current_actor(x_user_id: Optional[str] = Header(None)) -> str:
    """ID de l'utilisateur connecté, fourni par le fournisseur d'identité"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Non authentifié")
    return x_user_id.strip()


def get_chantier_service(db=Depends(get_database)) -> ChantierService:
    return ChantierService(db[config.CHANTIERS_COLLECTION])


def get_chantier_directory(db=Depends(get_database)) -> ChantierDirectory:
    return ChantierDirectory(db[config.CHANTIERS_COLLECTION], reconnect_delay=config.REALTIME_RECONNECT_DELAY)


def get_user_name_resolver(db=Depends(get_database)) -> UserNameResolver:
    global _user_name_resolver
    if _user_name_resolver is None:
        _user_name_resolver = UserNameResolver(db[config.USERS_COLLECTION])
    return _user_name_resolver
