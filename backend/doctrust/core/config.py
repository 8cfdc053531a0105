from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "DocTrust"
    APP_VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    DEBUG: bool = False
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Identity provider settings
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "your-secret-key-here")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Database settings
    MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "doctrust")

    # Azure Storage settings
    AZURE_STORAGE_ACCOUNT_NAME: str = os.getenv("AZURE_STORAGE_ACCOUNT_NAME", "")
    AZURE_STORAGE_ACCOUNT_KEY: str = os.getenv("AZURE_STORAGE_ACCOUNT_KEY", "")
    AZURE_STORAGE_CONNECTION_STRING: str = os.getenv("AZURE_STORAGE_CONNECTION_STRING", "")
    AZURE_CONTAINER_DOCUMENTS: str = os.getenv("AZURE_CONTAINER_DOCUMENTS", "documents")
    AZURE_CONTAINER_CERTIFICATES: str = os.getenv("AZURE_CONTAINER_CERTIFICATES", "certificates")
    AZURE_CONTAINER_SIGNATURES: str = os.getenv("AZURE_CONTAINER_SIGNATURES", "signatures")
    AZURE_CONTAINER_SIGNED_COPIES: str = os.getenv("AZURE_CONTAINER_SIGNED_COPIES", "signed-copies")

    # Hashing settings
    IP_HASH_SECRET: str = os.getenv("IP_HASH_SECRET", "ip-hash-secret-change-in-production")
    CERTIFICATE_SIGNER_KEY_ID: str = os.getenv("CERTIFICATE_SIGNER_KEY_ID", "doctrust-certificate-v1")

    # Access link settings
    ACCESS_LINK_DEFAULT_TTL_HOURS: int = int(os.getenv("ACCESS_LINK_DEFAULT_TTL_HOURS", "168"))
    ACCESS_LINK_MAX_TTL_HOURS: int = int(os.getenv("ACCESS_LINK_MAX_TTL_HOURS", str(24 * 365)))
    INVITE_LINK_TTL_DAYS: int = int(os.getenv("INVITE_LINK_TTL_DAYS", "36500"))  # ~100 years, i.e. "no expiry"
    ACCESS_LINK_ATOMIC_USAGE: bool = os.getenv("ACCESS_LINK_ATOMIC_USAGE", "true").lower() == "true"

    # Retrieval URL validity windows
    RETRIEVAL_URL_TTL_SECONDS: int = int(os.getenv("RETRIEVAL_URL_TTL_SECONDS", "3600"))
    SIGNATURE_IMAGE_URL_TTL_SECONDS: int = int(os.getenv("SIGNATURE_IMAGE_URL_TTL_SECONDS", "300"))

    # Document settings
    MAX_DOCUMENT_SIZE_MB: int = 10
    ALLOWED_DOCUMENT_TYPES: list = ["application/pdf"]

    # Signature image settings
    MAX_SIGNATURE_IMAGE_MB: int = 2
    ALLOWED_IMAGE_TYPES: list = ["image/png", "image/jpeg"]
    SIGNATURE_OPACITY: float = 0.95

    # Rate limiting
    RATE_LIMIT_BACKEND: str = os.getenv("RATE_LIMIT_BACKEND", "memory")  # memory, redis
    REDIS_URL: Optional[str] = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RATE_LIMIT_WINDOW_MS: int = int(os.getenv("RATE_LIMIT_WINDOW_MS", "60000"))
    RATE_LIMIT_CREATE_LINK: int = int(os.getenv("RATE_LIMIT_CREATE_LINK", "20"))
    RATE_LIMIT_RESOLVE_LINK: int = int(os.getenv("RATE_LIMIT_RESOLVE_LINK", "60"))
    RATE_LIMIT_REVOKE_LINK: int = int(os.getenv("RATE_LIMIT_REVOKE_LINK", "30"))
    RATE_LIMIT_GENERATE_CERTIFICATE: int = int(os.getenv("RATE_LIMIT_GENERATE_CERTIFICATE", "10"))
    RATE_LIMIT_COMPOSE: int = int(os.getenv("RATE_LIMIT_COMPOSE", "5"))
    RATE_LIMIT_SIGN: int = int(os.getenv("RATE_LIMIT_SIGN", "10"))
    RATE_LIMIT_DEFAULT: int = int(os.getenv("RATE_LIMIT_DEFAULT", "60"))

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
