"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Chantiers Console - Annuaire temps réel des chantiers                       ║
║                                                                              ║
║  Abonnements push sur la collection `chantiers` (change streams MongoDB).    ║
║                                                                              ║
║  CONTRAT:                                                                    ║
║  - le callback reçoit l'ÉTAT COMPLET (liste ou document), jamais un diff     ║
║  - première émission à l'ouverture, puis une par changement                  ║
║  - toute erreur (store, document invalide) va à on_error, le flux se rouvre  ║
║  - unsubscribe() coupe la livraison immédiatement                            ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

from config import REALTIME_RECONNECT_DELAY
from models.chantier import Chantier, ChantierStats, ChantierStatus, PhaseStatus
from services.errors import ChantierError, TransientStoreError, ValidationError

logger = logging.getLogger("chantier_directory")

LIST_LIMIT = 1000

Callback = Callable[[Any], Union[None, Awaitable[None]]]


async def _invoke(callback: Callback, value) -> None:
    result = callback(value)
    if inspect.isawaitable(result):
        await result


def compute_stats(chantiers: List[Chantier]) -> ChantierStats:
    """Compteurs tableau de bord: fonction pure de la liste courante"""
    stats = ChantierStats(total=len(chantiers))
    for chantier in chantiers:
        if chantier.status == ChantierStatus.EN_COURS:
            stats.en_cours += 1
        elif chantier.status == ChantierStatus.TERMINE:
            stats.termines += 1
        elif chantier.status == ChantierStatus.EN_RETARD:
            stats.en_retard += 1
        elif chantier.status == ChantierStatus.EN_ATTENTE:
            stats.en_attente += 1
    return stats


class Subscription:
    """Handle d'un abonnement temps réel"""

    def __init__(self, name: str):
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info(f"[REALTIME] Désabonnement {self.name}")

    async def wait_closed(self) -> None:
        """Attend la libération du change stream sous-jacent"""
        if self._task is not None:
            await asyncio.wait({self._task})


class ChantierDirectory:
    """
    Fabrique d'abonnements sur la collection chantiers.

    Args:
        collection: collection motor `chantiers`
        reconnect_delay: délai (s) avant réouverture d'un flux en erreur
    """

    def __init__(self, collection, reconnect_delay: float = REALTIME_RECONNECT_DELAY):
        self.collection = collection
        self.reconnect_delay = reconnect_delay

    # ════════════════════════════════════════════════════════════════════
    # ABONNEMENTS LISTE
    # ════════════════════════════════════════════════════════════════════

    def subscribe_all(self, callback: Callback, on_error: Optional[Callback] = None) -> Subscription:
        """Tous les chantiers (vue admin), triés par updated_at décroissant"""
        return self._subscribe_list("all", {}, callback, on_error)

    def subscribe_chef(self, chef_id: str, callback: Callback, on_error: Optional[Callback] = None) -> Subscription:
        return self._subscribe_list(f"chef:{chef_id}", {"assigned_chef_id": chef_id}, callback, on_error)

    def _subscribe_list(self, name: str, query: Dict[str, Any], callback, on_error) -> Subscription:
        async def fetch() -> List[Chantier]:
            docs = await self.collection.find(query, {"_id": 0}).sort("updated_at", -1).to_list(LIST_LIMIT)
            return [Chantier.from_document(doc) for doc in docs]

        # Une suppression ne porte pas le document: on écoute toute la collection
        return self._start(name, fetch, [], callback, on_error)

    # ════════════════════════════════════════════════════════════════════
    # ABONNEMENTS DOCUMENT
    # ════════════════════════════════════════════════════════════════════

    def subscribe_one(self, chantier_id: str, callback: Callback, on_error: Optional[Callback] = None) -> Subscription:
        """Un chantier; le callback reçoit None s'il n'existe pas (ou plus)"""
        async def fetch() -> Optional[Chantier]:
            doc = await self.collection.find_one({"id": chantier_id}, {"_id": 0})
            return Chantier.from_document(doc) if doc else None

        pipeline = [{"$match": {"documentKey._id": chantier_id}}]
        return self._start(f"chantier:{chantier_id}", fetch, pipeline, callback, on_error)

    def subscribe_client(self, client_id: str, callback: Callback, on_error: Optional[Callback] = None) -> Subscription:
        """Le chantier d'un client (premier trouvé) ou None"""
        async def fetch() -> Optional[Chantier]:
            doc = await self.collection.find_one({"client_id": client_id}, {"_id": 0})
            return Chantier.from_document(doc) if doc else None

        return self._start(f"client:{client_id}", fetch, [], callback, on_error)

    # ════════════════════════════════════════════════════════════════════
    # BOUCLE DE FLUX
    # ════════════════════════════════════════════════════════════════════

    def _start(self, name: str, fetch, pipeline: list, callback, on_error) -> Subscription:
        subscription = Subscription(name)
        subscription._task = asyncio.get_running_loop().create_task(
            self._run(subscription, fetch, pipeline, callback, on_error)
        )
        logger.info(f"[REALTIME] Abonnement {name}")
        return subscription

    async def _run(self, subscription: Subscription, fetch, pipeline, callback, on_error) -> None:
        while subscription.active:
            try:
                # Flux ouvert AVANT la lecture initiale: aucun changement perdu entre les deux
                async with self.collection.watch(pipeline, full_document="updateLookup") as stream:
                    await self._deliver(subscription, fetch, callback)
                    async for _change in stream:
                        await self._deliver(subscription, fetch, callback)
                logger.info(f"[REALTIME] {subscription.name}: flux fermé par le serveur, réouverture")
            except PyMongoError as e:
                logger.warning(
                    f"[REALTIME] {subscription.name}: erreur store ({e}), "
                    f"réouverture dans {self.reconnect_delay}s"
                )
                if subscription.active and on_error is not None:
                    await self._notify_error(subscription, on_error, TransientStoreError(str(e)))
            except PydanticValidationError as e:
                logger.error(f"[REALTIME] {subscription.name}: document chantier invalide ({e})")
                if subscription.active and on_error is not None:
                    await self._notify_error(subscription, on_error, ValidationError(str(e)))
            except Exception as e:
                logger.exception(f"[REALTIME] {subscription.name}: lecture en échec")
                if subscription.active and on_error is not None:
                    await self._notify_error(subscription, on_error, ChantierError(str(e)))
            if subscription.active:
                await asyncio.sleep(self.reconnect_delay)

    async def _deliver(self, subscription: Subscription, fetch, callback) -> None:
        state = await fetch()
        if not subscription.active:
            return
        try:
            await _invoke(callback, state)
        except Exception:
            # Un consommateur défaillant ne coupe pas le flux des autres émissions
            logger.exception(f"[REALTIME] {subscription.name}: callback en échec")

    async def _notify_error(self, subscription: Subscription, on_error, error: ChantierError) -> None:
        try:
            await _invoke(on_error, error)
        except Exception:
            logger.exception(f"[REALTIME] {subscription.name}: on_error en échec")


# ════════════════════════════════════════════════════════════════════════════
# VUES TEMPS RÉEL
# ════════════════════════════════════════════════════════════════════════════

class RealtimeChantiers:
    """
    État vivant d'une liste de chantiers (tableau de bord, écran chef).

    stats est recalculé depuis la liste à chaque lecture: il ne peut pas dériver.
    Une erreur store conserve le dernier état connu et renseigne error.
    """

    def __init__(self, directory: ChantierDirectory, chef_id: Optional[str] = None,
                 on_change: Optional[Callback] = None):
        self.directory = directory
        self.chef_id = chef_id
        self.on_change = on_change
        self.chantiers: List[Chantier] = []
        self.loading = True
        self.error: Optional[Exception] = None
        self._subscription: Optional[Subscription] = None

    @property
    def stats(self) -> ChantierStats:
        return compute_stats(self.chantiers)

    def start(self) -> "RealtimeChantiers":
        if self._subscription is None:
            if self.chef_id is None:
                self._subscription = self.directory.subscribe_all(self._on_update, self._on_error)
            else:
                self._subscription = self.directory.subscribe_chef(self.chef_id, self._on_update, self._on_error)
        return self

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            await self._subscription.wait_closed()
            self._subscription = None

    async def _on_update(self, chantiers: List[Chantier]) -> None:
        self.chantiers = chantiers
        self.loading = False
        self.error = None
        if self.on_change is not None:
            await _invoke(self.on_change, self)

    def _on_error(self, error: Exception) -> None:
        self.error = error
        self.loading = False

    async def __aenter__(self):
        return self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()


class RealtimeChantier:
    """État vivant d'un chantier (écran de détail)"""

    def __init__(self, directory: ChantierDirectory, chantier_id: str,
                 on_change: Optional[Callback] = None):
        self.directory = directory
        self.chantier_id = chantier_id
        self.on_change = on_change
        self.chantier: Optional[Chantier] = None
        self.loading = True
        self.error: Optional[Exception] = None
        self._subscription: Optional[Subscription] = None

    def start(self) -> "RealtimeChantier":
        if self._subscription is None:
            self._subscription = self.directory.subscribe_one(self.chantier_id, self._on_update, self._on_error)
        return self

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            await self._subscription.wait_closed()
            self._subscription = None

    async def _on_update(self, chantier: Optional[Chantier]) -> None:
        self.chantier = chantier
        self.loading = False
        self.error = None
        if self.on_change is not None:
            await _invoke(self.on_change, self)

    def _on_error(self, error: Exception) -> None:
        self.error = error
        self.loading = False

    async def __aenter__(self):
        return self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # Données calculées

    @property
    def has_chantier(self) -> bool:
        return self.chantier is not None

    @property
    def global_progress(self) -> int:
        return self.chantier.global_progress if self.chantier else 0

    @property
    def status(self) -> ChantierStatus:
        return self.chantier.status if self.chantier else ChantierStatus.EN_ATTENTE

    @property
    def phases_actives(self):
        if not self.chantier:
            return []
        return [p for p in self.chantier.phases if p.status == PhaseStatus.IN_PROGRESS]

    @property
    def phases_terminees(self):
        if not self.chantier:
            return []
        return [p for p in self.chantier.phases if p.status == PhaseStatus.COMPLETED]

    @property
    def total_phases(self) -> int:
        return len(self.chantier.phases) if self.chantier else 0

    @property
    def total_equipe(self) -> int:
        return len(self.chantier.team) if self.chantier else 0

    @property
    def total_photos(self) -> int:
        return len(self.chantier.gallery) if self.chantier else 0

    @property
    def total_updates(self) -> int:
        return len(self.chantier.updates) if self.chantier else 0
