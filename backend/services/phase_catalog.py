"""
Chantiers Console - Catalogue des phases standards

Séquence ordonnée utilisée à la création d'un chantier. L'ordre définit
l'affichage et l'enchaînement des travaux. Le catalogue ne porte aucun ID:
chaque chantier reçoit des phases neuves avec leurs propres identifiants.
"""

from datetime import datetime
from typing import List, NamedTuple, Tuple

from config import new_id
from models.chantier import ChantierPhase, PhaseStatus


class PhaseTemplate(NamedTuple):
    name: str
    description: str
    estimated_duration: int  # jours


STANDARD_PHASES: Tuple[PhaseTemplate, ...] = (
    PhaseTemplate("Fondations", "Terrassement et coulage des fondations", 14),
    PhaseTemplate("Gros œuvre", "Construction de la structure principale", 30),
    PhaseTemplate("Toiture", "Installation de la charpente et couverture", 10),
    PhaseTemplate("Électricité & Plomberie", "Installation des réseaux électriques et de plomberie", 21),
    PhaseTemplate("Finitions", "Peinture, carrelage et finitions intérieures", 20),
)


def instantiate_phases(actor_id: str, now: datetime) -> List[ChantierPhase]:
    """Phases neuves (0 %, pending, sans équipe/matériaux/photos) horodatées par l'acteur"""
    return [
        ChantierPhase(
            id=new_id(),
            name=template.name,
            description=template.description,
            status=PhaseStatus.PENDING,
            progress=0,
            estimated_duration=template.estimated_duration,
            last_updated=now,
            updated_by=actor_id,
        )
        for template in STANDARD_PHASES
    ]
