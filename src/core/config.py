import os

from dotenv import load_dotenv

load_dotenv()

MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://mongodb:27017/quiz_scoring")
MONGODB_DB = os.getenv("MONGODB_DB", "quiz_scoring")

APP_SECRET = os.getenv("APP_SECRET", "dev-secret-change-me-before-deploying")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")

TRIVIA_API_URL = os.getenv("TRIVIA_API_URL", "https://opentdb.com/api.php")
TRIVIA_CATEGORIES_URL = os.getenv("TRIVIA_CATEGORIES_URL", "https://opentdb.com/api_category.php")

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_SENDER = os.getenv("SMTP_SENDER", "noreply@quizscoring.app")

LEADERBOARD_REBUILD_BATCH_SIZE = int(os.getenv("LEADERBOARD_REBUILD_BATCH_SIZE", "100"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
