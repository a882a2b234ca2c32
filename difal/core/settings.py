import os
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

class _Settings(BaseModel):
    MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "50"))
    SPED_MAX_LINES: int = int(os.getenv("SPED_MAX_LINES", "1000000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    EXPORT_PROCESSING_LOG: bool = os.getenv("EXPORT_PROCESSING_LOG", "true").lower() == "true"
    DEFAULT_PERCENTUAL_DESTINATARIO: float = float(os.getenv("DEFAULT_PERCENTUAL_DESTINATARIO", "100"))
    ENCODING_MIN_CONFIDENCE: float = float(os.getenv("ENCODING_MIN_CONFIDENCE", "0.5"))
    LOG_DIR: Path = Field(default=Path(os.getenv("LOG_DIR", "./logs")))
    RATE_TABLES_PATH: Optional[Path] = Field(
        default=Path(os.environ["RATE_TABLES_PATH"]) if os.getenv("RATE_TABLES_PATH") else None
    )
    ALLOWED_EXTENSIONS: List[str] = Field(default=[".txt"])
    ALLOWED_MIME_PREFIXES: List[str] = Field(
        default=[
            "text/plain",
            "application/octet-stream",
        ]
    )

    @property
    def processing_log_file(self) -> Path:
        return self.LOG_DIR / "calculation_log.json"

    def ensure_directories(self) -> None:
        self.LOG_DIR.mkdir(parents=True, exist_ok=True)

settings = _Settings()
