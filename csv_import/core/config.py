from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./csv_import.db"
    debug: bool = False
    log_level: str = "INFO"
    log_file: str = ""  # Also append logs to this file when set

    # Import batching
    import_batch_size: int = 0  # Records to create per job before pausing (0 = no batching)
    undo_page_size: int = 100  # Ledger entries removed per undo query

    # Source files
    import_upload_dir: str = "./uploads"  # Where create_import copies source CSV files

    # File attachments fetched from URLs
    file_storage_dir: str = "./files"
    file_download_timeout_seconds: int = 30
    file_max_size_mb: int = 50

    model_config = ConfigDict(env_file=".env", extra="ignore")


settings = Settings()
