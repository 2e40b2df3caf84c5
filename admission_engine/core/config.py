from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # School identity; school_code is the prefix of every issued code (SCH-2024-0001)
    school_code: str = Field("SCH", alias="SCHOOL_CODE")
    school_name: str = Field("School Name", alias="SCHOOL_NAME")
    school_address: str = Field("School Address", alias="SCHOOL_ADDRESS")
    principal_name: Optional[str] = Field(None, alias="PRINCIPAL_NAME")
    offer_letter_valid_days: int = Field(7, alias="OFFER_LETTER_VALID_DAYS")

    # Workflow policy
    allow_interview_without_test: bool = Field(True, alias="ALLOW_INTERVIEW_WITHOUT_TEST")
    store_retry_attempts: int = Field(3, ge=1, alias="STORE_RETRY_ATTEMPTS")
    operation_timeout_seconds: float = Field(30.0, gt=0, alias="OPERATION_TIMEOUT_SECONDS")

    # Collaborators
    notification_webhook_url: Optional[str] = Field(None, alias="NOTIFICATION_WEBHOOK_URL")
    document_service_url: Optional[str] = Field(None, alias="DOCUMENT_SERVICE_URL")
    collaborator_timeout_seconds: float = Field(10.0, gt=0, alias="COLLABORATOR_TIMEOUT_SECONDS")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    debug: bool = Field(False, alias="DEBUG")

    @field_validator("school_code")
    @classmethod
    def validate_school_code(cls, v: str) -> str:
        code = v.strip()
        if not code or not code.isalnum() or not code.isascii() or code != code.upper():
            raise ValueError("SCHOOL_CODE must be uppercase letters and digits only")
        return code

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


settings = Settings()
