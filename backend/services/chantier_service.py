"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Chantiers Console - Cycle de vie des chantiers                              ║
║                                                                              ║
║  SEUL CE MODULE modifie un document chantier.                                ║
║                                                                              ║
║  Chaque mutation suit le même schéma:                                        ║
║    1. lecture du document complet                                            ║
║    2. transformation en mémoire                                              ║
║    3. recalcul progression globale + statut                                  ║
║    4. réécriture du document complet ($set)                                  ║
║                                                                              ║
║  CONCURRENCE: aucun verrou, le dernier écrivain gagne. Deux mises à jour     ║
║  simultanées du même chantier peuvent s'écraser (limite acceptée).           ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

from config import ensure_utc, new_id, now_utc
from models.chantier import (
    Chantier,
    ChantierCreate,
    ChantierPhase,
    ChantierStatus,
    ChantierUpdate,
    GeoLocation,
    PhaseStatus,
    ProgressPhoto,
    ProgressUpdate,
    ProgressUpdateCreate,
    TeamMember,
    TeamMemberCreate,
    to_iso,
)
from services.errors import NotFoundError, TransientStoreError, ValidationError
from services.phase_catalog import instantiate_phases
from services.progress import (
    clamp_progress,
    compute_global_progress,
    derive_phase_status,
    derive_site_status,
)

logger = logging.getLogger("chantier_service")

LIST_LIMIT = 1000
SYSTEM_ACTOR = "system"


def _coerce(model_cls, data):
    """Accepte un modèle déjà construit ou un dict; les erreurs pydantic deviennent ValidationError"""
    if isinstance(data, model_cls):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e


class ChantierService:
    """
    Gestionnaire du cycle de vie des chantiers.

    Args:
        collection: collection motor `chantiers` (injectée, jamais globale)
        clock: source de l'heure courante (UTC aware)
    """

    def __init__(self, collection, clock: Callable[[], datetime] = now_utc):
        self.collection = collection
        self._clock = clock

    # ════════════════════════════════════════════════════════════════════
    # ACCÈS STORE
    # ════════════════════════════════════════════════════════════════════

    async def _call(self, action: str, awaitable):
        try:
            return await awaitable
        except PyMongoError as e:
            logger.error(f"[CHANTIER] {action} en échec: {e}")
            raise TransientStoreError(f"{action}: {e}") from e

    async def _load(self, chantier_id: str) -> Chantier:
        chantier = await self.get_chantier(chantier_id)
        if chantier is None:
            raise NotFoundError("Chantier", chantier_id)
        return chantier

    async def _save(self, chantier: Chantier) -> None:
        doc = chantier.to_document()
        doc.pop("_id")
        result = await self._call(
            f"écriture chantier {chantier.id}",
            self.collection.update_one({"id": chantier.id}, {"$set": doc})
        )
        # Supprimé entre la lecture et l'écriture
        if result.matched_count == 0:
            raise NotFoundError("Chantier", chantier.id)

    @staticmethod
    def _phase_or_raise(chantier: Chantier, phase_id: str) -> ChantierPhase:
        phase = chantier.find_phase(phase_id)
        if phase is None:
            raise NotFoundError("Phase", phase_id)
        return phase

    @staticmethod
    def _recompute(chantier: Chantier, now: datetime) -> None:
        chantier.global_progress = compute_global_progress(chantier.phases)
        chantier.status = derive_site_status(chantier.phases, chantier.planned_end_date, now)
        if chantier.global_progress == 100:
            chantier.actual_end_date = chantier.actual_end_date or now
        else:
            chantier.actual_end_date = None
        chantier.updated_at = now

    # ════════════════════════════════════════════════════════════════════
    # LECTURE
    # ════════════════════════════════════════════════════════════════════

    async def get_chantier(self, chantier_id: str) -> Optional[Chantier]:
        doc = await self._call(
            f"lecture chantier {chantier_id}",
            self.collection.find_one({"id": chantier_id}, {"_id": 0})
        )
        return Chantier.from_document(doc) if doc else None

    async def get_client_chantier(self, client_id: str) -> Optional[Chantier]:
        """Un client n'a qu'un chantier (convention): on renvoie le premier trouvé"""
        doc = await self._call(
            f"lecture chantier du client {client_id}",
            self.collection.find_one({"client_id": client_id}, {"_id": 0})
        )
        return Chantier.from_document(doc) if doc else None

    async def _list(self, query: Dict[str, Any]) -> List[Chantier]:
        docs = await self._call(
            "liste chantiers",
            self.collection.find(query, {"_id": 0}).sort("updated_at", -1).to_list(LIST_LIMIT)
        )
        return [Chantier.from_document(doc) for doc in docs]

    async def get_chef_chantiers(self, chef_id: str) -> List[Chantier]:
        return await self._list({"assigned_chef_id": chef_id})

    async def get_all_chantiers(self) -> List[Chantier]:
        return await self._list({})

    async def get_overdue_candidates(self, now: datetime) -> List[Chantier]:
        """Chantiers encore "En cours" dont la date de fin prévue est dépassée"""
        return await self._list({
            "status": ChantierStatus.EN_COURS.value,
            "planned_end_date": {"$lt": to_iso(ensure_utc(now))}
        })

    # ════════════════════════════════════════════════════════════════════
    # CRÉATION / SUPPRESSION
    # ════════════════════════════════════════════════════════════════════

    async def create_chantier_from_template(
        self,
        client_id: str,
        project_template_id: str,
        data: Union[ChantierCreate, dict],
        actor_id: str
    ) -> str:
        """
        Crée un chantier depuis un template de projet et le catalogue de phases.

        L'existence du client et du template est vérifiée en amont
        (services.references); ce service fait confiance à ses entrées.

        Returns:
            ID du chantier créé
        """
        data = _coerce(ChantierCreate, data)
        now = self._clock()

        chantier = Chantier(
            id=new_id(),
            client_id=client_id,
            project_template_id=project_template_id,
            name=data.name,
            address=data.address,
            status=ChantierStatus.EN_ATTENTE,
            global_progress=0,
            start_date=data.start_date,
            planned_end_date=data.planned_end_date,
            phases=instantiate_phases(actor_id, now),
            assigned_chef_id=data.assigned_chef_id,
            team=[],
            gallery=[],
            updates=[],
            created_at=now,
            updated_at=now,
            created_by=actor_id,
        )

        await self._call("création chantier", self.collection.insert_one(chantier.to_document()))
        logger.info(
            f"[CHANTIER] Créé {chantier.id} | client={client_id} template={project_template_id} "
            f"phases={len(chantier.phases)} by={actor_id}"
        )
        return chantier.id

    async def delete_chantier(self, chantier_id: str) -> None:
        result = await self._call(
            f"suppression chantier {chantier_id}",
            self.collection.delete_one({"id": chantier_id})
        )
        if result.deleted_count == 0:
            raise NotFoundError("Chantier", chantier_id)
        logger.info(f"[CHANTIER] Supprimé {chantier_id}")

    # ════════════════════════════════════════════════════════════════════
    # PHASES
    # ════════════════════════════════════════════════════════════════════

    async def update_phase_progress(
        self,
        chantier_id: str,
        phase_id: str,
        progress,
        notes: Optional[str] = None,
        actor_id: str = SYSTEM_ACTOR
    ) -> Chantier:
        """
        Met à jour la progression d'une phase puis recalcule le chantier.

        progress est borné à [0, 100]; notes=None conserve les notes existantes.
        Le statut de la phase est re-dérivé (un blocage éventuel est levé).
        """
        value = clamp_progress(progress)
        chantier = await self._load(chantier_id)
        phase = self._phase_or_raise(chantier, phase_id)
        now = self._clock()

        phase.progress = value
        phase.status = derive_phase_status(value)
        if notes is not None:
            phase.notes = notes
        if value > 0 and phase.actual_start_date is None:
            phase.actual_start_date = now
        phase.actual_end_date = (phase.actual_end_date or now) if value == 100 else None
        phase.last_updated = now
        phase.updated_by = actor_id

        self._recompute(chantier, now)
        await self._save(chantier)

        logger.info(
            f"[CHANTIER] {chantier_id} | phase '{phase.name}' -> {value}% | "
            f"global={chantier.global_progress}% status={chantier.status.value}"
        )
        return chantier

    async def set_phase_blocked(
        self,
        chantier_id: str,
        phase_id: str,
        blocked: bool,
        actor_id: str = SYSTEM_ACTOR,
        notes: Optional[str] = None
    ) -> Chantier:
        """Pose ou lève explicitement le statut blocked (jamais dérivé de la progression)"""
        if not isinstance(blocked, bool):
            raise ValidationError(f"blocked doit être un booléen: {blocked!r}")

        chantier = await self._load(chantier_id)
        phase = self._phase_or_raise(chantier, phase_id)
        now = self._clock()

        phase.status = PhaseStatus.BLOCKED if blocked else derive_phase_status(phase.progress)
        if notes is not None:
            phase.notes = notes
        phase.last_updated = now
        phase.updated_by = actor_id

        self._recompute(chantier, now)
        await self._save(chantier)

        logger.info(f"[CHANTIER] {chantier_id} | phase '{phase.name}' blocked={blocked} by={actor_id}")
        return chantier

    async def add_phase_photo(
        self,
        chantier_id: str,
        phase_id: str,
        photo_url: str,
        description: Optional[str] = None,
        actor_id: str = SYSTEM_ACTOR,
        location: Union[GeoLocation, dict, None] = None
    ) -> ProgressPhoto:
        """Ajoute la photo à la phase ET à la galerie du chantier"""
        if not isinstance(photo_url, str) or not photo_url.strip():
            raise ValidationError("URL de photo manquante")
        if location is not None:
            location = _coerce(GeoLocation, location)

        chantier = await self._load(chantier_id)
        phase = self._phase_or_raise(chantier, phase_id)
        now = self._clock()

        phase.photos.append(photo_url)
        phase.last_updated = now
        phase.updated_by = actor_id

        photo = ProgressPhoto(
            id=new_id(),
            url=photo_url,
            phase_id=phase_id,
            description=description,
            location=location,
            uploaded_at=now,
            uploaded_by=actor_id,
        )
        chantier.gallery.append(photo)
        chantier.updated_at = now

        await self._save(chantier)
        logger.info(f"[CHANTIER] {chantier_id} | photo {photo.id} ajoutée à '{phase.name}'")
        return photo

    # ════════════════════════════════════════════════════════════════════
    # ÉQUIPE
    # ════════════════════════════════════════════════════════════════════

    async def add_team_member(
        self,
        chantier_id: str,
        member: Union[TeamMemberCreate, dict],
        actor_id: str
    ) -> TeamMember:
        member = _coerce(TeamMemberCreate, member)
        chantier = await self._load(chantier_id)
        now = self._clock()

        new_member = TeamMember(
            **member.model_dump(),
            id=new_id(),
            added_at=now,
            added_by=actor_id,
        )
        chantier.team.append(new_member)
        chantier.updated_at = now

        await self._save(chantier)
        logger.info(f"[CHANTIER] {chantier_id} | membre {new_member.name} ({new_member.role}) ajouté")
        return new_member

    async def remove_team_member(self, chantier_id: str, member_id: str) -> None:
        """Retire le membre de l'équipe et de toutes les affectations de phase"""
        chantier = await self._load(chantier_id)
        remaining = [m for m in chantier.team if m.id != member_id]
        if len(remaining) == len(chantier.team):
            raise NotFoundError("Membre", member_id)

        chantier.team = remaining
        for phase in chantier.phases:
            if member_id in phase.assigned_team_members:
                phase.assigned_team_members = [m for m in phase.assigned_team_members if m != member_id]
        chantier.updated_at = self._clock()

        await self._save(chantier)
        logger.info(f"[CHANTIER] {chantier_id} | membre {member_id} retiré")

    # ════════════════════════════════════════════════════════════════════
    # JOURNAL DE CHANTIER
    # ════════════════════════════════════════════════════════════════════

    async def add_progress_update(
        self,
        chantier_id: str,
        update: Union[ProgressUpdateCreate, dict],
        actor_id: str
    ) -> ProgressUpdate:
        """Insère la mise à jour en tête de liste (plus récente en premier)"""
        update = _coerce(ProgressUpdateCreate, update)
        chantier = await self._load(chantier_id)
        if update.related_phase_id is not None:
            self._phase_or_raise(chantier, update.related_phase_id)
        now = self._clock()

        new_update = ProgressUpdate(
            **update.model_dump(),
            id=new_id(),
            created_at=now,
            created_by=actor_id,
        )
        chantier.updates.insert(0, new_update)
        chantier.updated_at = now

        await self._save(chantier)
        logger.info(f"[CHANTIER] {chantier_id} | update '{new_update.title}' ({new_update.type.value})")
        return new_update

    # ════════════════════════════════════════════════════════════════════
    # ÉDITION / RECALCUL
    # ════════════════════════════════════════════════════════════════════

    async def update_chantier(
        self,
        chantier_id: str,
        data: Union[ChantierUpdate, dict],
        actor_id: str = SYSTEM_ACTOR
    ) -> Chantier:
        """Édition partielle (nom, adresse, chef, dates). Statut et progression sont recalculés."""
        data = _coerce(ChantierUpdate, data)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        chantier = await self._load(chantier_id)
        for field, value in changes.items():
            setattr(chantier, field, value)
        if chantier.planned_end_date < chantier.start_date:
            raise ValidationError("La date de fin prévue précède la date de début")

        self._recompute(chantier, self._clock())
        await self._save(chantier)

        logger.info(f"[CHANTIER] {chantier_id} | édité {sorted(changes)} by={actor_id}")
        return chantier

    async def refresh_status(self, chantier_id: str) -> Chantier:
        """Recalcule le statut à l'instant présent; n'écrit que s'il a changé"""
        chantier = await self._load(chantier_id)
        now = self._clock()
        status = derive_site_status(chantier.phases, chantier.planned_end_date, now)
        if status != chantier.status:
            previous = chantier.status
            chantier.status = status
            chantier.updated_at = now
            await self._save(chantier)
            logger.info(f"[CHANTIER] {chantier_id} | statut {previous.value} -> {status.value}")
        return chantier
