"""
MedSafety Configuration Management
Handles all application settings using Pydantic Settings
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator
from typing import List


class Settings(BaseSettings):
    """Application settings with validation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )

    # Environment
    environment: str = Field(default="development", pattern="^(development|production|test)$")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # API Server
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_reload: bool = Field(default=True)

    # Rule Modules
    rules_renal_dosing: bool = Field(default=True)
    rules_triple_whammy: bool = Field(default=True)
    rules_opioid_safety: bool = Field(default=True)
    rules_antithrombotic: bool = Field(default=True)
    rules_serotonin: bool = Field(default=True)
    rules_beers: bool = Field(default=True)

    # Unknown Drug Log
    unknown_drug_log_enabled: bool = Field(default=True)
    unknown_drug_log_path: str = Field(default="logs/unknown_drugs.json")

    # Security
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"]
    )
    cors_allow_credentials: bool = Field(default=True)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from string or list"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("unknown_drug_log_path")
    @classmethod
    def validate_log_path(cls, v: str) -> str:
        """Unknown drug log must be a JSON file"""
        if not v.strip().lower().endswith(".json"):
            raise ValueError("unknown_drug_log_path must point to a .json file")
        return v.strip()

    @model_validator(mode="after")
    def validate_rule_modules(self) -> "Settings":
        """At least one rule module must stay enabled"""
        if not any(self.enabled_rule_flags.values()):
            raise ValueError("At least one rules_* module flag must be enabled")
        return self

    @property
    def enabled_rule_flags(self) -> dict:
        """Rule module flags keyed by setting name"""
        return {
            "rules_renal_dosing": self.rules_renal_dosing,
            "rules_triple_whammy": self.rules_triple_whammy,
            "rules_opioid_safety": self.rules_opioid_safety,
            "rules_antithrombotic": self.rules_antithrombotic,
            "rules_serotonin": self.rules_serotonin,
            "rules_beers": self.rules_beers,
        }

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        """Check if running in test"""
        return self.environment == "test"


# Global settings instance
settings = Settings()
