"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Chantiers Console - Routes Chantiers                                        ║
║                                                                              ║
║  Lecture, création et suivi d'avancement des chantiers.                      ║
║  Toute mutation passe par ChantierService (recalcul statut + progression)    ║
║  puis est tracée dans event_log.                                             ║
║                                                                              ║
║  Temps réel: /chantiers/ws (liste + stats) et /chantiers/{id}/ws             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from models.chantier import (
    Chantier,
    ChantierCreateRequest,
    ChantierListResponse,
    ChantierUpdate,
    PhaseBlockedUpdate,
    PhasePhotoCreate,
    PhaseProgressUpdate,
    ProgressUpdateCreate,
    TeamMemberCreate,
)
from routes.deps import (
    get_chantier_directory,
    get_chantier_service,
    get_current_actor,
    get_database,
    get_user_name_resolver,
)
from services.chantier_directory import ChantierDirectory, compute_stats
from services.chantier_service import ChantierService
from services.errors import NotFoundError
from services.event_logger import log_event
from services.references import ensure_client_exists, ensure_project_exists
from services.status_refresh import refresh_overdue_chantiers
from services.user_names import UserNameResolver, collect_user_ids

logger = logging.getLogger("routes.chantiers")

router = APIRouter(prefix="/chantiers", tags=["Chantiers"])


# ==================== LECTURE ====================

@router.get("", response_model=ChantierListResponse)
async def list_chantiers(
    chef_id: Optional[str] = Query(None, description="Chantiers d'un chef"),
    client_id: Optional[str] = Query(None, description="Chantier d'un client"),
    service: ChantierService = Depends(get_chantier_service),
    actor: str = Depends(get_current_actor)
):
    """Liste des chantiers (tous, ceux d'un chef ou celui d'un client) + compteurs"""
    if client_id:
        chantier = await service.get_client_chantier(client_id)
        chantiers: List[Chantier] = [chantier] if chantier else []
    elif chef_id:
        chantiers = await service.get_chef_chantiers(chef_id)
    else:
        chantiers = await service.get_all_chantiers()

    return ChantierListResponse(
        chantiers=chantiers,
        count=len(chantiers),
        stats=compute_stats(chantiers)
    )


@router.get("/stats")
async def chantiers_stats(
    service: ChantierService = Depends(get_chantier_service),
    actor: str = Depends(get_current_actor)
):
    chantiers = await service.get_all_chantiers()
    return compute_stats(chantiers)


@router.post("/refresh-status")
async def refresh_status_now(
    service: ChantierService = Depends(get_chantier_service),
    actor: str = Depends(get_current_actor)
):
    """Déclenche manuellement le recalcul des statuts en retard"""
    report = await refresh_overdue_chantiers(service)
    logger.info(f"[CHANTIERS] Recalcul manuel des statuts par {actor}")
    return report


@router.get("/{chantier_id}")
async def get_chantier(
    chantier_id: str,
    service: ChantierService = Depends(get_chantier_service),
    resolver: UserNameResolver = Depends(get_user_name_resolver),
    actor: str = Depends(get_current_actor)
):
    """Chantier complet + noms des utilisateurs référencés"""
    chantier = await service.get_chantier(chantier_id)
    if chantier is None:
        raise NotFoundError("Chantier", chantier_id)

    user_names = await resolver.resolve_names(collect_user_ids(chantier))
    return {"chantier": chantier, "user_names": user_names}


# ==================== CRÉATION / ÉDITION ====================

@router.post("")
async def create_chantier(
    data: ChantierCreateRequest,
    service: ChantierService = Depends(get_chantier_service),
    db=Depends(get_database),
    actor: str = Depends(get_current_actor)
):
    """
    Crée un chantier depuis un template de projet.

    Le client et le template doivent exister.
    """
    await ensure_client_exists(db, data.client_id)
    await ensure_project_exists(db, data.project_template_id)

    chantier_id = await service.create_chantier_from_template(
        data.client_id,
        data.project_template_id,
        data,
        actor
    )
    chantier = await service.get_chantier(chantier_id)

    await log_event(
        db.event_log, "chantier_create", "chantier", chantier_id, user=actor,
        related={"client_id": data.client_id, "project_template_id": data.project_template_id}
    )
    return {"success": True, "chantier": chantier}


@router.patch("/{chantier_id}")
async def update_chantier(
    chantier_id: str,
    data: ChantierUpdate,
    service: ChantierService = Depends(get_chantier_service),
    db=Depends(get_database),
    actor: str = Depends(get_current_actor)
):
    chantier = await service.update_chantier(chantier_id, data, actor)
    await log_event(
        db.event_log, "chantier_update", "chantier", chantier_id, user=actor,
        details=data.model_dump(mode="json", exclude_unset=True)
    )
    return {"success": True, "chantier": chantier}


@router.delete("/{chantier_id}")
async def delete_chantier(
    chantier_id: str,
    service: ChantierService = Depends(get_chantier_service),
    db=Depends(get_database),
    actor: str = Depends(get_current_actor)
):
    await service.delete_chantier(chantier_id)
    await log_event(db.event_log, "chantier_delete", "chantier", chantier_id, user=actor)
    return {"success": True}


# ==================== PHASES ====================

@router.patch("/{chantier_id}/phases/{phase_id}/progress")
async def update_phase_progress(
    chantier_id: str,
    phase_id: str,
    data: PhaseProgressUpdate,
    service: ChantierService = Depends(get_chantier_service),
    db=Depends(get_database),
    actor: str = Depends(get_current_actor)
):
    chantier = await service.update_phase_progress(chantier_id, phase_id, data.progress, data.notes, actor)
    phase = chantier.find_phase(phase_id)
    await log_event(
        db.event_log, "phase_progress", "phase", phase_id, user=actor,
        details={"progress": phase.progress, "global_progress": chantier.global_progress},
        related={"chantier_id": chantier_id}
    )
    return {"success": True, "chantier": chantier}


@router.patch("/{chantier_id}/phases/{phase_id}/blocked")
async def set_phase_blocked(
    chantier_id: str,
    phase_id: str,
    data: PhaseBlockedUpdate,
    service: ChantierService = Depends(get_chantier_service),
    db=Depends(get_database),
    actor: str = Depends(get_current_actor)
):
    chantier = await service.set_phase_blocked(chantier_id, phase_id, data.blocked, actor, data.notes)
    await log_event(
        db.event_log, "phase_blocked", "phase", phase_id, user=actor,
        details={"blocked": data.blocked},
        related={"chantier_id": chantier_id}
    )
    return {"success": True, "chantier": chantier}


@router.post("/{chantier_id}/phases/{phase_id}/photos")
async def add_phase_photo(
    chantier_id: str,
    phase_id: str,
    data: PhasePhotoCreate,
    service: ChantierService = Depends(get_chantier_service),
    db=Depends(get_database),
    actor: str = Depends(get_current_actor)
):
    photo = await service.add_phase_photo(
        chantier_id, phase_id, data.url, data.description, actor, location=data.location
    )
    await log_event(
        db.event_log, "photo_add", "photo", photo.id, user=actor,
        related={"chantier_id": chantier_id, "phase_id": phase_id}
    )
    return {"success": True, "photo": photo}


# ==================== ÉQUIPE ====================

@router.post("/{chantier_id}/team")
async def add_team_member(
    chantier_id: str,
    data: TeamMemberCreate,
    service: ChantierService = Depends(get_chantier_service),
    db=Depends(get_database),
    actor: str = Depends(get_current_actor)
):
    member = await service.add_team_member(chantier_id, data, actor)
    await log_event(
        db.event_log, "team_add", "team_member", member.id, user=actor,
        details={"name": member.name, "role": member.role},
        related={"chantier_id": chantier_id}
    )
    return {"success": True, "member": member}


@router.delete("/{chantier_id}/team/{member_id}")
async def remove_team_member(
    chantier_id: str,
    member_id: str,
    service: ChantierService = Depends(get_chantier_service),
    db=Depends(get_database),
    actor: str = Depends(get_current_actor)
):
    await service.remove_team_member(chantier_id, member_id)
    await log_event(
        db.event_log, "team_remove", "team_member", member_id, user=actor,
        related={"chantier_id": chantier_id}
    )
    return {"success": True}


# ==================== JOURNAL ====================

@router.post("/{chantier_id}/updates")
async def add_progress_update(
    chantier_id: str,
    data: ProgressUpdateCreate,
    service: ChantierService = Depends(get_chantier_service),
    db=Depends(get_database),
    actor: str = Depends(get_current_actor)
):
    update = await service.add_progress_update(chantier_id, data, actor)
    await log_event(
        db.event_log, "progress_update", "progress_update", update.id, user=actor,
        details={"type": update.type.value, "title": update.title},
        related={"chantier_id": chantier_id}
    )
    return {"success": True, "update": update}


# ==================== TEMPS RÉEL ====================

async def _hold_open(websocket: WebSocket, subscription) -> None:
    """Garde la connexion ouverte jusqu'à la déconnexion du client"""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        subscription.unsubscribe()
        await subscription.wait_closed()


@router.websocket("/ws")
async def chantiers_ws(
    websocket: WebSocket,
    chef_id: Optional[str] = None,
    directory: ChantierDirectory = Depends(get_chantier_directory)
):
    """Pousse la liste complète + compteurs à chaque changement"""
    await websocket.accept()

    async def push(chantiers: List[Chantier]):
        await websocket.send_json({
            "type": "snapshot",
            "chantiers": jsonable_encoder(chantiers),
            "count": len(chantiers),
            "stats": compute_stats(chantiers).model_dump()
        })

    async def push_error(error: Exception):
        await websocket.send_json({"type": "error", "detail": str(error)})

    if chef_id:
        subscription = directory.subscribe_chef(chef_id, push, push_error)
    else:
        subscription = directory.subscribe_all(push, push_error)
    await _hold_open(websocket, subscription)


@router.websocket("/{chantier_id}/ws")
async def chantier_ws(
    websocket: WebSocket,
    chantier_id: str,
    directory: ChantierDirectory = Depends(get_chantier_directory)
):
    """Pousse le chantier complet (ou null s'il n'existe plus) à chaque changement"""
    await websocket.accept()

    async def push(chantier: Optional[Chantier]):
        await websocket.send_json({
            "type": "snapshot",
            "chantier": jsonable_encoder(chantier) if chantier else None
        })

    async def push_error(error: Exception):
        await websocket.send_json({"type": "error", "detail": str(error)})

    subscription = directory.subscribe_one(chantier_id, push, push_error)
    await _hold_open(websocket, subscription)
