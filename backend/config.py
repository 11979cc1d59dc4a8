"""
Configuration et utilitaires partagés
"""

import os
import uuid
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'chantiers_console')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Collections
CHANTIERS_COLLECTION = os.environ.get('CHANTIERS_COLLECTION', 'chantiers')
USERS_COLLECTION = os.environ.get('USERS_COLLECTION', 'users')

# Temps réel: délai avant réouverture d'un change stream en erreur (secondes)
REALTIME_RECONNECT_DELAY = float(os.environ.get('REALTIME_RECONNECT_DELAY', '2'))

# Recalcul nocturne des statuts "En retard"
STATUS_REFRESH_ENABLED = os.environ.get('STATUS_REFRESH_ENABLED', 'true').lower() == 'true'
STATUS_REFRESH_HOUR = int(os.environ.get('STATUS_REFRESH_HOUR', '3'))

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


# ==================== HELPERS ====================

def now_utc() -> datetime:
    """Retourne la date/heure actuelle (UTC, aware)"""
    return datetime.now(timezone.utc)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return now_utc().isoformat()

def new_id() -> str:
    """Génère un identifiant unique (phases, photos, membres, chantiers)"""
    return str(uuid.uuid4())

def ensure_utc(value: datetime) -> datetime:
    """Une date sans fuseau est considérée comme UTC, les autres sont ramenées en UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
