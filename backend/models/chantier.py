"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Chantiers Console - Modèle Chantier                                         ║
║                                                                              ║
║  Un chantier = un client, un template de projet, des phases ordonnées.       ║
║  Phases, équipe, galerie et mises à jour sont EMBARQUÉES dans le document.   ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - progress d'une phase toujours dans [0, 100]                               ║
║  - global_progress = moyenne arrondie des phases (calculée, jamais saisie)   ║
║  - status recalculé à chaque mutation (sauf à la création)                   ║
║  - updates triées de la plus récente à la plus ancienne                      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    model_validator,
)

from config import ensure_utc


def to_iso(value: datetime) -> str:
    # Format fixe (microsecondes + offset) pour que le tri sur les chaînes suive le temps
    return value.isoformat(timespec="microseconds")


# Stockage Mongo en chaîne ISO, lecture en datetime UTC aware
UtcDatetime = Annotated[
    datetime,
    AfterValidator(ensure_utc),
    PlainSerializer(to_iso, return_type=str, when_used="json"),
]


class ChantierStatus(str, Enum):
    """Statut global d'un chantier (dérivé des phases et de la date de fin prévue)"""
    EN_ATTENTE = "En attente"
    EN_COURS = "En cours"
    TERMINE = "Terminé"
    EN_RETARD = "En retard"


class PhaseStatus(str, Enum):
    """
    Statut d'une phase.
    BLOCKED n'est jamais dérivé de la progression: il ne se pose qu'explicitement.
    """
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class UpdateType(str, Enum):
    PHASE_COMPLETION = "phase_completion"
    ISSUE = "issue"
    DELIVERY = "delivery"
    MILESTONE = "milestone"


class MaterialStatus(str, Enum):
    ORDERED = "ordered"
    DELIVERED = "delivered"
    INSTALLED = "installed"


# ==================== SOUS-DOCUMENTS ====================

class RequiredMaterial(BaseModel):
    """Matériau requis pour une phase (référence au catalogue matériaux)"""
    material_id: str
    quantity: float = 0
    unit: str = ""
    status: MaterialStatus = MaterialStatus.ORDERED
    delivery_date: Optional[UtcDatetime] = None


class ChantierPhase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    description: str = ""
    status: PhaseStatus = PhaseStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)

    # Planning
    planned_start_date: Optional[UtcDatetime] = None
    planned_end_date: Optional[UtcDatetime] = None
    actual_start_date: Optional[UtcDatetime] = None
    actual_end_date: Optional[UtcDatetime] = None

    # Ressources
    assigned_team_members: List[str] = []  # IDs de TeamMember
    required_materials: List[RequiredMaterial] = []
    estimated_duration: int = 0  # en jours

    # Suivi
    notes: str = ""
    photos: List[str] = []  # URLs
    last_updated: UtcDatetime
    updated_by: str


class TeamMember(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    role: str  # Maçon, Électricien, Plombier...
    phone: Optional[str] = None
    experience: Optional[str] = None
    user_id: Optional[str] = None  # compte utilisateur lié, si existant
    added_at: UtcDatetime
    added_by: str


class GeoLocation(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ProgressPhoto(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    url: str
    phase_id: Optional[str] = None
    description: Optional[str] = None
    location: Optional[GeoLocation] = None
    uploaded_at: UtcDatetime
    uploaded_by: str


class ProgressUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    description: str = ""
    type: UpdateType
    related_phase_id: Optional[str] = None
    photos: List[str] = []
    created_at: UtcDatetime
    created_by: str
    is_visible_to_client: bool = True


# ==================== DOCUMENT CHANTIER ====================

class Chantier(BaseModel):
    """Document chantier tel que stocké dans la collection `chantiers`"""
    model_config = ConfigDict(extra="ignore")  # Ignore le _id Mongo

    id: str
    client_id: str
    project_template_id: str
    name: str
    address: str = ""
    status: ChantierStatus = ChantierStatus.EN_ATTENTE
    global_progress: int = Field(default=0, ge=0, le=100)
    start_date: UtcDatetime
    planned_end_date: UtcDatetime
    actual_end_date: Optional[UtcDatetime] = None

    phases: List[ChantierPhase] = []

    assigned_chef_id: str
    team: List[TeamMember] = []

    gallery: List[ProgressPhoto] = []
    updates: List[ProgressUpdate] = []  # plus récente en premier

    created_at: UtcDatetime
    updated_at: UtcDatetime
    created_by: str

    def find_phase(self, phase_id: str) -> Optional[ChantierPhase]:
        for phase in self.phases:
            if phase.id == phase_id:
                return phase
        return None

    def to_document(self) -> dict:
        """Document Mongo complet: _id = id pour cibler les change streams"""
        doc = self.model_dump(mode="json")
        doc["_id"] = self.id
        return doc

    @classmethod
    def from_document(cls, doc: dict) -> "Chantier":
        return cls.model_validate(doc)


# ==================== ENTRÉES (API / service) ====================

class ChantierCreate(BaseModel):
    """Personnalisation d'un chantier créé depuis un template de projet"""
    name: str = Field(..., min_length=1, max_length=255)
    address: str = ""
    assigned_chef_id: str = Field(..., min_length=1)
    start_date: UtcDatetime
    planned_end_date: UtcDatetime

    @model_validator(mode="after")
    def check_dates(self):
        if self.planned_end_date < self.start_date:
            raise ValueError("La date de fin prévue précède la date de début")
        return self


class ChantierCreateRequest(ChantierCreate):
    """Corps de POST /chantiers"""
    client_id: str = Field(..., min_length=1)
    project_template_id: str = Field(..., min_length=1)


class ChantierUpdate(BaseModel):
    """Mise à jour partielle. status et global_progress ne sont jamais acceptés."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    address: Optional[str] = None
    assigned_chef_id: Optional[str] = None
    start_date: Optional[UtcDatetime] = None
    planned_end_date: Optional[UtcDatetime] = None


class TeamMemberCreate(BaseModel):
    name: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    phone: Optional[str] = None
    experience: Optional[str] = None
    user_id: Optional[str] = None


class ProgressUpdateCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    type: UpdateType
    related_phase_id: Optional[str] = None
    photos: List[str] = []
    is_visible_to_client: bool = True


class PhaseProgressUpdate(BaseModel):
    """Hors bornes accepté: le service borne à [0, 100] et arrondit"""
    progress: float
    notes: Optional[str] = None


class PhaseBlockedUpdate(BaseModel):
    blocked: bool
    notes: Optional[str] = None


class PhasePhotoCreate(BaseModel):
    url: str = Field(..., min_length=1)
    description: Optional[str] = None
    location: Optional[GeoLocation] = None


# ==================== LECTURE ====================

class ChantierStats(BaseModel):
    """Compteurs tableau de bord, recalculés à chaque émission"""
    total: int = 0
    en_cours: int = 0
    termines: int = 0
    en_retard: int = 0
    en_attente: int = 0


class ChantierListResponse(BaseModel):
    chantiers: List[Chantier]
    count: int
    stats: ChantierStats
