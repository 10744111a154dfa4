from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase # type: ignore
from pymongo import ASCENDING, DESCENDING, IndexModel # type: ignore

from .config import DATABASE_NAME, MONGODB_URL


EVENTS_COLLECTION = "proctoring_events"
SESSIONS_COLLECTION = "interview_sessions"

EVENT_INDEXES = [
    IndexModel([("candidateId", ASCENDING), ("timestamp", DESCENDING)]),
    IndexModel([("sessionId", ASCENDING)]),
]

SESSION_INDEXES = [
    IndexModel([("sessionId", ASCENDING)], unique=True),
    IndexModel([("candidateId", ASCENDING), ("createdAt", DESCENDING)]),
]


def get_database(url: str = MONGODB_URL, name: str = DATABASE_NAME) -> AsyncIOMotorDatabase:
    # tz_aware so stored instants come back as UTC datetimes
    client = AsyncIOMotorClient(url, tz_aware=True)
    return client[name]
