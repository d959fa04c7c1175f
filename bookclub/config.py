"""Configuration management."""
import os
from typing import List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    """Application configuration."""
    
    # Database
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "bookclub")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")
    
    @property
    def DATABASE_URL(self):
        """Build PostgreSQL connection string."""
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
    
    # External APIs
    GOOGLE_BOOKS_API_KEY = os.getenv("GOOGLE_BOOKS_API_KEY")
    NYT_API_KEY = os.getenv("NYT_API_KEY")
    FIREBASE_API_KEY = os.getenv("FIREBASE_API_KEY")
    
    # Members allowed to curate the read and scheduled lists
    ADMIN_EMAILS = _split_list(os.getenv("ADMIN_EMAILS", ""))
    
    # Published spreadsheet used for bulk import
    SHEET_CSV_URL = os.getenv("SHEET_CSV_URL", "")
    
    # Defaults
    SEARCH_TIMEOUT = float(os.getenv("SEARCH_TIMEOUT", "15"))
    SEARCH_MAX_RESULTS = int(os.getenv("SEARCH_MAX_RESULTS", "40"))
    DEFAULT_TIMEOUT = int(os.getenv("DEFAULT_TIMEOUT", "10"))
    DEFAULT_MAX_RETRIES = int(os.getenv("DEFAULT_MAX_RETRIES", "3"))
