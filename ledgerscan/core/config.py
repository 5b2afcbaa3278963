from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("ledgerscan", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Generation backend
    llm_provider: str = Field("ollama", alias="LLM_PROVIDER")  # ollama | groq | together | openrouter | openai | none
    llm_model: str | None = Field(default=None, alias="LLM_MODEL")
    llm_api_key: str | None = Field(default=None, alias="LLM_API_KEY")
    llm_base_url: str | None = Field(default=None, alias="LLM_BASE_URL")
    ollama_url: str = Field("http://localhost:11434", alias="OLLAMA_URL")
    ollama_model: str = Field("llama3.2:3b", alias="OLLAMA_MODEL")
    llm_timeout_seconds: float = Field(60.0, alias="LLM_TIMEOUT_SECONDS")
    llm_max_retries: int = Field(2, alias="LLM_MAX_RETRIES")
    llm_backoff_seconds: float = Field(1.0, alias="LLM_BACKOFF_SECONDS")
    llm_text_budget: int = Field(4000, alias="LLM_TEXT_BUDGET")
    llm_temperature: float = Field(0.0, alias="LLM_TEMPERATURE")
    llm_max_tokens: int = Field(2048, alias="LLM_MAX_TOKENS")

    # Optical recognition
    ocr_provider: str = Field("tesseract", alias="OCR_PROVIDER")  # tesseract | azure
    tesseract_langs: str = Field("eng+heb", alias="TESSERACT_LANGS")
    tesseract_cmd: str | None = Field(default=None, alias="TESSERACT_CMD")
    ocr_min_dimension: int = Field(1500, alias="OCR_MIN_DIMENSION")
    pdf_min_text_chars: int = Field(50, alias="PDF_MIN_TEXT_CHARS")
    pdf_max_ocr_pages: int = Field(2, alias="PDF_MAX_OCR_PAGES")
    pdf_raster_dpi: int = Field(300, alias="PDF_RASTER_DPI")

    # Azure Document Intelligence (OCR_PROVIDER=azure)
    az_di_endpoint: str | None = Field(default=None, alias="AZ_DI_ENDPOINT")
    az_di_api_key: str | None = Field(default=None, alias="AZ_DI_API_KEY")

    # Recognition pass scoring (hand-tuned, override per deployment)
    ocr_keyword_weight: float = Field(10.0, alias="OCR_KEYWORD_WEIGHT")
    ocr_money_weight: float = Field(5.0, alias="OCR_MONEY_WEIGHT")
    ocr_date_weight: float = Field(3.0, alias="OCR_DATE_WEIGHT")
    ocr_length_bonus_cap: float = Field(20.0, alias="OCR_LENGTH_BONUS_CAP")
    ocr_garbage_ratio: float = Field(0.10, alias="OCR_GARBAGE_RATIO")
    ocr_garbage_penalty: float = Field(10.0, alias="OCR_GARBAGE_PENALTY")

    # Currency conversion
    fx_provider: str = Field("frankfurter", alias="FX_PROVIDER")  # frankfurter | openexchangerates | exchangerateapi
    fx_api_url: str | None = Field(default=None, alias="FX_API_URL")
    fx_api_key: str | None = Field(default=None, alias="FX_API_KEY")
    fx_cache_ttl_seconds: float = Field(43200.0, alias="FX_CACHE_TTL_SECONDS")

    # Tenant defaults
    default_currency: str = Field("ILS", alias="DEFAULT_CURRENCY")
    accepted_currencies: str = Field("ILS,USD,EUR,GBP", alias="ACCEPTED_CURRENCIES")  # Comma-separated list
    review_confidence_threshold: float = Field(0.7, alias="REVIEW_CONFIDENCE_THRESHOLD")

    # Events
    service_bus_connection_string: str | None = Field(default=None, alias="SERVICE_BUS_CONNECTION_STRING")
    service_bus_entity_name: str = Field("extraction-events", alias="SERVICE_BUS_ENTITY_NAME")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "populate_by_name": True,
        "extra": "ignore",
    }

    @property
    def accepted_currency_codes(self) -> tuple[str, ...]:
        return tuple(
            code.strip().upper() for code in self.accepted_currencies.split(",") if code.strip()
        )

settings = Settings()
