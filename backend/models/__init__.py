"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Chantiers Console - Models Package                                          ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import Chantier, ChantierStatus, PhaseStatus, etc.              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from .chantier import (
    # Enums
    ChantierStatus,
    PhaseStatus,
    UpdateType,
    MaterialStatus,
    # Sous-documents
    RequiredMaterial,
    ChantierPhase,
    TeamMember,
    GeoLocation,
    ProgressPhoto,
    ProgressUpdate,
    # Document
    Chantier,
    # Entrées
    ChantierCreate,
    ChantierCreateRequest,
    ChantierUpdate,
    TeamMemberCreate,
    ProgressUpdateCreate,
    PhaseProgressUpdate,
    PhaseBlockedUpdate,
    PhasePhotoCreate,
    # Lecture
    ChantierStats,
    ChantierListResponse,
)
