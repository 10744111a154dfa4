from dotenv import load_dotenv # type: ignore
import os


# Load environment variables from .env file
load_dotenv()

# MongoDB connection
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "proctoring")

# "mongo" or "memory"
STORE_BACKEND = os.getenv("STORE_BACKEND", "mongo").lower()

# HTTP server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5000"))
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if origin.strip()
]

# Client-side sync
PROCTORING_API_URL = os.getenv("PROCTORING_API_URL", "http://localhost:5000")
SYNC_TIMEOUT = float(os.getenv("SYNC_TIMEOUT", "5"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
