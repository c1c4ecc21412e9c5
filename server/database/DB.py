import logging
from contextlib import asynccontextmanager
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError
from fastapi import Request

from config.config import MONGODB_URI, DATABASE_NAME, MONGODB_TRANSACTIONS
from helpers.DateTimeSerializer import DateTimeSerializerVisitor

logger = logging.getLogger(__name__)

USERS = "users"
CLUBS = "clubs"
EVENTS = "events"
POLLS = "polls"
FEEDBACK = "feedback"
LEAVE_REQUESTS = "leave_requests"
MEMBERSHIP_REQUESTS = "membership_requests"


def get_db(request: Request):
    """Dependency to get database instance from app state"""
    return request.app.state.db


def _opts(session):
    return {"session": session} if session is not None else {}


class UnitOfWork:
    """
    Handle for a group of writes that must succeed or fail together.

    With a server side transaction `session` is set and passed to every write.
    Without one, callers register the inverse of each write with `compensate`
    and those run newest first if the block raises.
    """
    def __init__(self, session=None):
        self.session = session
        self._compensations = []

    @property
    def transactional(self):
        return self.session is not None

    def compensate(self, action, *args):
        if not self.transactional:
            self._compensations.append((action, args))

    async def rollback(self):
        while self._compensations:
            action, args = self._compensations.pop()
            try:
                await action(*args)
            except PyMongoError:
                logger.exception("Compensating action %s%s failed", getattr(action, "__name__", action), args)


class Database:
    def __init__(self, client=None, database_name=DATABASE_NAME):
        self.MONGO_URI = MONGODB_URI
        self.database_name = database_name
        self.client = client
        self.db = None
        self.transactions_supported = False

    def connect(self):
        if self.client is None:
            self.client = AsyncIOMotorClient(self.MONGO_URI)
        self.db = self.client[self.database_name]
        logger.info("Using MongoDB database %r", self.database_name)

    def close(self):
        if self.client is not None:
            self.client.close()

    def serializer(self, obj):
        visitor = DateTimeSerializerVisitor()
        return visitor.visit(obj)

    async def detect_transaction_support(self):
        """Replica sets and mongos routers support transactions, standalone servers do not"""
        if MONGODB_TRANSACTIONS in ("true", "false"):
            self.transactions_supported = MONGODB_TRANSACTIONS == "true"
        else:
            try:
                hello = await self.client.admin.command("hello")
                self.transactions_supported = bool(hello.get("setName") or hello.get("msg") == "isdbgrid")
            except (PyMongoError, NotImplementedError, AttributeError) as e:
                logger.warning("Could not detect transaction support, using compensating writes: %s", e)
                self.transactions_supported = False
        logger.info("Transactions supported: %s", self.transactions_supported)
        return self.transactions_supported

    async def ensure_indexes(self):
        """Uniqueness lives in the storage layer rather than in read-then-write checks"""
        await self.db[USERS].create_index([("email", ASCENDING)], unique=True, name="email_unique")
        await self.db[USERS].create_index([("rollNo", ASCENDING)], unique=True, name="rollNo_unique")
        await self.db[USERS].create_index([("role", ASCENDING)], name="role_idx")
        await self.db[USERS].create_index([("coordinatingClub", ASCENDING)], name="coordinatingClub_idx")
        await self.db[CLUBS].create_index([("name", ASCENDING)], unique=True, name="name_unique")
        await self.db[EVENTS].create_index([("club", ASCENDING), ("status", ASCENDING)], name="club_status_idx")
        await self.db[EVENTS].create_index([("date", ASCENDING)], name="date_idx")
        await self.db[POLLS].create_index([("scope", ASCENDING), ("clubId", ASCENDING), ("status", ASCENDING)], name="scope_club_status_idx")
        await self.db[FEEDBACK].create_index([("club", ASCENDING), ("isToAdmin", ASCENDING)], name="club_admin_idx")
        await self.db[FEEDBACK].create_index([("createdAt", DESCENDING)], name="createdAt_idx")
        for collection in (LEAVE_REQUESTS, MEMBERSHIP_REQUESTS):
            await self.db[collection].create_index([("pendingKey", ASCENDING)], unique=True, sparse=True, name="pending_unique")
            await self.db[collection].create_index([("coordinator", ASCENDING), ("status", ASCENDING)], name="coordinator_status_idx")
        logger.info("Database indexes ensured")

    @asynccontextmanager
    async def transaction(self):
        if self.transactions_supported:
            async with await self.client.start_session() as session:
                async with session.start_transaction():
                    yield UnitOfWork(session)
            return

        uow = UnitOfWork()
        try:
            yield uow
        except Exception:
            logger.warning("Unit of work failed, running compensating writes")
            await uow.rollback()
            raise

    def get_collection(self, collection_name):
        """Get a collection object for direct MongoDB operations"""
        return self.db[collection_name]

    async def add(self, collection_name, data, session=None):
        collection = self.db[collection_name]
        result = await collection.insert_one(data, **_opts(session))

        if result.inserted_id:
            data["_id"] = str(result.inserted_id)
            data = self.serializer(data)
            return {
                "status": 200,
                "data": data,
                "message": "Document added successfully"
            }
        else:
            return {
                "status": 500,
                "message": "Failed to add document"
            }

    async def add_many(self, collection_name, documents, session=None):
        collection = self.db[collection_name]
        result = await collection.insert_many(documents, ordered=True, **_opts(session))
        return {
            "status": 200,
            "inserted_ids": [str(i) for i in result.inserted_ids],
            "data": self.serializer(documents),
            "message": f"Added {len(result.inserted_ids)} documents"
        }

    async def find_many(self, collection_name, query=None, projection=None, sort=None, limit=None):
        """Find multiple documents matching query"""
        collection = self.db[collection_name]
        cursor = collection.find(query or {}, projection)

        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)

        documents = []
        async for doc in cursor:
            doc["_id"] = str(doc["_id"])
            doc = self.serializer(doc)
            documents.append(doc)

        return {
            "status": 200,
            "data": documents,
            "message": "Documents retrieved successfully"
        }

    async def find_one(self, collection_name, query, projection=None, session=None):
        """Find a single document (returns document directly or None)"""
        collection = self.db[collection_name]
        document = await collection.find_one(query, projection, **_opts(session))

        if document:
            document["_id"] = str(document["_id"])
            document = self.serializer(document)

        return document

    async def count(self, collection_name, query=None):
        collection = self.db[collection_name]
        return await collection.count_documents(query or {})

    async def update(self, collection_name, query, update_string, session=None):
        collection = self.db[collection_name]
        result = await collection.update_one(query, update_string, **_opts(session))

        return {
            "status": 200 if result.modified_count > 0 else 404,
            "matched_count": result.matched_count,
            "modified_count": result.modified_count,
            "message": "Document updated successfully" if result.modified_count > 0 else "Document not found or no changes made"
        }

    async def update_many(self, collection_name, query, update_string, session=None):
        """Update multiple documents"""
        collection = self.db[collection_name]
        result = await collection.update_many(query, update_string, **_opts(session))

        return {
            "status": 200,
            "matched_count": result.matched_count,
            "modified_count": result.modified_count,
            "message": f"Updated {result.modified_count} documents"
        }

    async def delete(self, collection_name, query, session=None):
        collection = self.db[collection_name]
        result = await collection.delete_one(query, **_opts(session))

        return {
            "status": 200 if result.deleted_count > 0 else 404,
            "deleted_count": result.deleted_count,
            "message": "Document deleted successfully" if result.deleted_count > 0 else "Document not found"
        }

    async def delete_many(self, collection_name, query, session=None):
        collection = self.db[collection_name]
        result = await collection.delete_many(query, **_opts(session))

        return {
            "status": 200,
            "deleted_count": result.deleted_count,
            "message": f"Deleted {result.deleted_count} documents"
        }
