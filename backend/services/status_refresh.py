"""
Service de recalcul nocturne des statuts de chantier
- Le statut "En retard" dépend de la date du jour, pas seulement des phases
- Un chantier sans mutation depuis sa date de fin prévue resterait "En cours"
- Ce job repasse ces chantiers "En retard" et génère un rapport
"""

import logging
from datetime import datetime
from typing import Optional

from config import now_utc
from services.chantier_service import ChantierService
from services.errors import NotFoundError

logger = logging.getLogger("status_refresh")


async def refresh_overdue_chantiers(service: ChantierService, now: Optional[datetime] = None) -> dict:
    """
    Recalcule le statut des chantiers "En cours" dont la date de fin est passée.

    Returns:
        dict: Rapport {run_at, checked, updated, skipped, details}
    """
    now = now or now_utc()
    report = {
        "run_at": now.isoformat(),
        "checked": 0,
        "updated": 0,
        "skipped": 0,
        "details": []
    }

    candidates = await service.get_overdue_candidates(now)
    report["checked"] = len(candidates)

    for candidate in candidates:
        try:
            chantier = await service.refresh_status(candidate.id)
        except NotFoundError:
            # Supprimé entre la requête et le recalcul
            report["skipped"] += 1
            continue

        if chantier.status != candidate.status:
            report["updated"] += 1
            report["details"].append({
                "chantier_id": chantier.id,
                "name": chantier.name,
                "from": candidate.status.value,
                "to": chantier.status.value
            })

    logger.info(
        f"[STATUS_REFRESH] {report['checked']} vérifiés, {report['updated']} mis à jour, "
        f"{report['skipped']} ignorés"
    )
    return report
