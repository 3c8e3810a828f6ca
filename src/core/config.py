from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_DOCUMENT_MODEL = "prebuilt-invoice"


class Settings(BaseSettings):
    app_name: str = Field("invoice-field-extractor", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # LLM field extraction (optional)
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    llm_base_url: str | None = Field(default=None, alias="LLM_BASE_URL")
    llm_model: str = Field("gpt-4o-mini", alias="LLM_MODEL")
    llm_max_chars: int = Field(15000, alias="LLM_MAX_CHARS")

    # Cloud image OCR (OCR.space)
    ocr_space_api_key: str | None = Field(default=None, alias="OCR_SPACE_API_KEY")
    ocr_space_url: str = Field("https://api.ocr.space/parse/image", alias="OCR_SPACE_URL")
    ocr_space_language: str = Field("hun", alias="OCR_SPACE_LANGUAGE")
    ocr_space_primary_engine: int = Field(2, alias="OCR_SPACE_PRIMARY_ENGINE")
    ocr_space_secondary_engine: int = Field(1, alias="OCR_SPACE_SECONDARY_ENGINE")
    ocr_timeout_seconds: float = Field(60.0, alias="OCR_TIMEOUT_SECONDS")

    # Local OCR (Tesseract)
    local_ocr_language: str = Field("hun+eng", alias="LOCAL_OCR_LANGUAGE")

    # Page rasterization
    rasterizer_command: str = Field("pdftoppm", alias="RASTERIZER_COMMAND")
    rasterizer_dpi: int = Field(300, ge=300, alias="RASTERIZER_DPI")
    rasterizer_timeout_seconds: float = Field(60.0, alias="RASTERIZER_TIMEOUT_SECONDS")

    # Azure Document Intelligence
    az_di_endpoint: str | None = Field(default=None, alias="AZ_DI_ENDPOINT")
    az_di_api_key: str | None = Field(default=None, alias="AZ_DI_API_KEY")
    az_di_model_id: str = Field(DEFAULT_DOCUMENT_MODEL, alias="AZ_DI_MODEL_ID")
    az_di_api_version: str = Field("2024-11-30", alias="AZ_DI_API_VERSION")
    az_di_poll_interval_seconds: float = Field(1.0, alias="AZ_DI_POLL_INTERVAL_SECONDS")
    az_di_max_polls: int = Field(12, alias="AZ_DI_MAX_POLLS")

    # Pipeline behaviour
    extraction_debug: bool = Field(False, alias="EXTRACTION_DEBUG")
    default_currency: str = Field("HUF", alias="DEFAULT_CURRENCY")
    min_text_chars: int = Field(20, alias="MIN_TEXT_CHARS")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "populate_by_name": True}

    @property
    def uses_custom_document_model(self) -> bool:
        return self.az_di_model_id != DEFAULT_DOCUMENT_MODEL

settings = Settings()
