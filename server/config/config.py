import os
from dotenv import load_dotenv

''' Environment driven settings for the Club Hub API '''

load_dotenv()

# Database
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "clubhub")
# "auto" probes the server at startup, "true"/"false" force the choice
MONGODB_TRANSACTIONS = os.getenv("MONGODB_TRANSACTIONS", "auto").lower()

# Auth
SECRET_KEY = os.getenv("SECRET_KEY", "clubhub-dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
TOKEN_EXPIRE_MINUTES = int(os.getenv("TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))
MIN_PASSWORD_LENGTH = 6
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# HTTP
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

# Uploads
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "uploads"))
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(5 * 1024 * 1024)))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR")

# Default admin for the seed-admin command
ADMIN_NAME = os.getenv("ADMIN_NAME", "Administrator")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@clubhub.local")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
ADMIN_ROLL_NO = os.getenv("ADMIN_ROLL_NO", "ADMIN001")


def is_production() -> bool:
    return ENVIRONMENT == "production"
