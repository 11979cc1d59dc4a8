"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Chantiers Console - Calcul de l'avancement                                  ║
║                                                                              ║
║  Fonctions PURES (aucune I/O):                                               ║
║  - statut d'une phase depuis sa progression                                  ║
║  - progression globale = moyenne arrondie (ROUND_HALF_UP) des phases         ║
║  - statut du chantier depuis les phases et la date de fin prévue             ║
║                                                                              ║
║  PRIORITÉS: Terminé > En attente > En retard > En cours                      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from config import now_utc, ensure_utc
from models.chantier import ChantierPhase, ChantierStatus, PhaseStatus
from services.errors import ValidationError


def clamp_progress(value) -> int:
    """
    Borne une progression dans [0, 100].

    Un flottant est arrondi au plus proche (demi vers le haut).
    Seul un TYPE invalide lève ValidationError: 150 devient 100, -5 devient 0.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Progression invalide: {value!r} (nombre attendu)")
    if isinstance(value, float):
        if math.isnan(value):
            raise ValidationError("Progression invalide: NaN")
        if math.isinf(value):
            return 100 if value > 0 else 0
        value = int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return max(0, min(100, value))


def derive_phase_status(progress: int) -> PhaseStatus:
    """pending à 0, completed à 100, in-progress sinon. Ne borne pas, ne renvoie jamais blocked."""
    if progress == 0:
        return PhaseStatus.PENDING
    if progress == 100:
        return PhaseStatus.COMPLETED
    return PhaseStatus.IN_PROGRESS


def compute_global_progress(phases: Sequence[ChantierPhase]) -> int:
    if not phases:
        return 0
    total = sum(phase.progress for phase in phases)
    mean = Decimal(total) / Decimal(len(phases))
    return int(mean.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def derive_site_status(
    phases: Sequence[ChantierPhase],
    planned_end_date: datetime,
    now: Optional[datetime] = None
) -> ChantierStatus:
    """
    Statut d'un chantier.

    Args:
        phases: phases du chantier
        planned_end_date: date de fin prévue
        now: instant de référence (défaut: maintenant, évalué à chaque appel)

    Un chantier terminé n'est jamais "En retard", un chantier sans
    avancement reste "En attente" même après la date prévue.
    """
    global_progress = compute_global_progress(phases)
    if global_progress == 100:
        return ChantierStatus.TERMINE
    if global_progress == 0:
        return ChantierStatus.EN_ATTENTE

    reference = ensure_utc(now) if now is not None else now_utc()
    if reference > ensure_utc(planned_end_date):
        return ChantierStatus.EN_RETARD
    return ChantierStatus.EN_COURS
