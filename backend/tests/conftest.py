"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Chantiers Console - Fixtures de test                                        ║
║                                                                              ║
║  FakeCollection imite le sous-ensemble motor utilisé par les services:       ║
║  find/sort/to_list, find_one, insert_one, update_one ($set), delete_one      ║
║  et watch() (change stream alimenté par les écritures).                      ║
║                                                                              ║
║  fail_on(op) fait lever PyMongoError au prochain appel de l'opération.       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from pymongo.errors import PyMongoError

from services.chantier_service import ChantierService


# ==================== FAKE MOTOR ====================

def _matches(doc: dict, query: dict) -> bool:
    for key, expected in query.items():
        value = doc.get(key)
        if isinstance(expected, dict):
            for op, operand in expected.items():
                if op == "$lt":
                    if value is None or not value < operand:
                        return False
                else:
                    raise NotImplementedError(op)
        elif value != expected:
            return False
    return True


def _project(doc: dict, projection) -> dict:
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        result = {k: doc[k] for k in included if k in doc}
        if projection.get("_id", 1) and "_id" in doc:
            result["_id"] = doc["_id"]
        return result
    for key, keep in projection.items():
        if not keep:
            doc.pop(key, None)
    return doc


class FakeCursor:
    def __init__(self, collection, docs):
        self.collection = collection
        self.docs = docs

    def sort(self, key, direction=1):
        self.docs = sorted(self.docs, key=lambda d: d.get(key) or "", reverse=direction == -1)
        return self

    async def to_list(self, length=None):
        self.collection._maybe_fail("find")
        return self.docs[:length] if length else list(self.docs)


class FakeChangeStream:
    def __init__(self, collection, pipeline):
        self.collection = collection
        self.pipeline = pipeline or []
        self.queue = asyncio.Queue()

    def accepts(self, change: dict) -> bool:
        for stage in self.pipeline:
            match = stage.get("$match", {})
            for key, expected in match.items():
                if key == "documentKey._id" and change["documentKey"]["_id"] != expected:
                    return False
        return True

    async def __aenter__(self):
        self.collection._maybe_fail("watch")
        self.collection.streams.append(self)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self in self.collection.streams:
            self.collection.streams.remove(self)
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if isinstance(item, Exception):
            raise item
        return item


class FakeCollection:
    def __init__(self, name="fake"):
        self.name = name
        self.docs = []
        self.streams = []
        self.calls = []
        self._failures = {}

    # Pannes simulées

    def fail_on(self, op: str, error: Exception = None, times: int = 1):
        self._failures[op] = [error or PyMongoError(f"{op} indisponible")] * times

    def _maybe_fail(self, op: str):
        pending = self._failures.get(op)
        if pending:
            raise pending.pop(0)

    def break_streams(self, error: Exception = None):
        """Coupe tous les change streams ouverts"""
        for stream in list(self.streams):
            stream.queue.put_nowait(error or PyMongoError("change stream interrompu"))

    def _emit(self, operation: str, doc_id):
        change = {"operationType": operation, "documentKey": {"_id": doc_id}}
        for stream in list(self.streams):
            if stream.accepts(change):
                stream.queue.put_nowait(change)

    # API motor

    def find(self, query=None, projection=None):
        self.calls.append(("find", query))
        docs = [_project(d, projection) for d in self.docs if _matches(d, query or {})]
        return FakeCursor(self, docs)

    async def find_one(self, query=None, projection=None):
        self.calls.append(("find_one", query))
        self._maybe_fail("find_one")
        for doc in self.docs:
            if _matches(doc, query or {}):
                return _project(doc, projection)
        return None

    async def insert_one(self, doc):
        self._maybe_fail("insert_one")
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", stored.get("id"))
        self.docs.append(stored)
        self._emit("insert", stored["_id"])
        return SimpleNamespace(inserted_id=stored["_id"])

    async def update_one(self, query, update):
        self.calls.append(("update_one", query))
        self._maybe_fail("update_one")
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                self._emit("update", doc["_id"])
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query):
        self._maybe_fail("delete_one")
        for doc in self.docs:
            if _matches(doc, query):
                self.docs.remove(doc)
                self._emit("delete", doc["_id"])
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def watch(self, pipeline=None, full_document=None):
        return FakeChangeStream(self, pipeline)


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


# ==================== HORLOGE ====================

class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


# ==================== ATTENTE D'ÉMISSIONS ====================

class Recorder:
    """Callback temps réel qui met de côté chaque émission"""

    def __init__(self):
        self.queue = asyncio.Queue()
        self.received = []

    def __call__(self, value):
        self.received.append(value)
        self.queue.put_nowait(value)

    async def next(self, timeout: float = 2.0):
        return await asyncio.wait_for(self.queue.get(), timeout)

    async def assert_silent(self, delay: float = 0.05):
        await asyncio.sleep(delay)
        assert self.queue.empty(), f"Émission inattendue: {self.queue.qsize()}"


# ==================== FIXTURES ====================

CHEF_ID = "chef-0001-aaaa-bbbb"
CLIENT_ID = "client-0001"
TEMPLATE_ID = "template-maison"


@pytest.fixture
def fake_db():
    db = FakeDatabase()
    db.clients.docs.append({"_id": CLIENT_ID, "id": CLIENT_ID, "name": "Dupont"})
    db.projects.docs.append({"_id": TEMPLATE_ID, "id": TEMPLATE_ID, "name": "Maison individuelle"})
    return db


@pytest.fixture
def chantiers(fake_db):
    return fake_db["chantiers"]


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(chantiers, clock):
    return ChantierService(chantiers, clock=clock)


@pytest.fixture
def chantier_payload(clock):
    return {
        "name": "Maison Dupont",
        "address": "12 rue des Lilas, Lyon",
        "assigned_chef_id": CHEF_ID,
        "start_date": clock.now - timedelta(days=30),
        "planned_end_date": clock.now + timedelta(days=90),
    }
