"""
Configuration management for the attendance reporting engine.

Loads environment variables and validates required settings.
"""

import os
from dotenv import load_dotenv

from attendance_reports.exceptions import ConfigurationError

# Load environment variables from .env file
load_dotenv()


class Config:
    """Configuration class for the reporting engine."""
    
    # Supabase credentials (required when talking to Supabase)
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    
    # Invocation limits
    REPORT_TIMEOUT_SECONDS: float = float(os.getenv("REPORT_TIMEOUT_SECONDS", "60"))
    MAX_WORKERS: int = int(os.getenv("REPORT_MAX_WORKERS", "4"))
    
    # PostgREST paging
    PAGE_SIZE: int = 1000  # Rows per request (server caps responses at 1000)
    IN_FILTER_CHUNK_SIZE: int = 200  # Ids per in.() filter to keep URLs short
    
    # Grading threshold for the summary rate status
    ATTENDANCE_TARGET_PERCENT: float = float(os.getenv("ATTENDANCE_TARGET_PERCENT", "75"))
    
    @classmethod
    def validate(cls) -> None:
        """
        Validate that all required configuration is present.
        
        Raises:
            ConfigurationError: If required configuration is missing.
        """
        missing = []
        
        if not cls.SUPABASE_URL:
            missing.append("SUPABASE_URL")
        if not cls.SUPABASE_SERVICE_ROLE_KEY:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
        
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}. "
                f"Please create a .env file with these values (see .env.example)."
            )
