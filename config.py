"""
Runtime configuration

Everything comes from environment variables (a local .env file is loaded first).
Read values through the module (config.UPLOAD_DIR) so they can be overridden.
"""
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

SECRET = os.getenv("SECRET", "change-me-in-production")
TOKEN_ALGORITHM = "HS256"
TOKEN_EXPIRE_DAYS = int(os.getenv("TOKEN_EXPIRE_DAYS", "7"))
# How long past expiry a still-registered token may be exchanged on /users/extend
EXTEND_GRACE_DAYS = int(os.getenv("EXTEND_GRACE_DAYS", "7"))

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "upload")
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(10 * 1024 * 1024)))

FTP = os.getenv("FTP", "false").lower() == "true"
FTP_HOST = os.getenv("FTP_HOST")
FTP_USER = os.getenv("FTP_USER")
FTP_PASS = os.getenv("FTP_PASS")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

LOG_DIR = os.getenv("LOG_DIR")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

PORT = int(os.getenv("PORT", 8000))
