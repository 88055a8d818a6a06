from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://familyhub:familyhub_secret@db:5432/familyhub"
    DATABASE_POOL_SIZE: int = 20
    JWT_SECRET: str = "familyhub-jwt-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    AUDIT_STORAGE_PATH: str = "./data/audit"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"
    SEED_SYSTEM_ROLES_ON_STARTUP: bool = True

    class Config:
        env_file = ".env"


settings = Settings()
