from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from src.core.config import MONGODB_DB, MONGODB_URL
from src.models.leaderboard import LeaderboardEntry
from src.models.quiz import Quiz
from src.models.submission import Submission
from src.models.user import User

client = None
db = None


async def init_db():
    global client, db
    client = AsyncIOMotorClient(MONGODB_URL)
    db = client[MONGODB_DB]
    await init_beanie(
        database=db,
        document_models=[
            User,
            Quiz,
            Submission,
            LeaderboardEntry,
        ],
    )


def close_db():
    if client is not None:
        client.close()
