import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

class Config:
    """Application configuration"""
    
    # API Configuration
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.2"))
    GEMINI_MAX_OUTPUT_TOKENS = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "8192"))
    
    # Rate Limiting Configuration
    GEMINI_REQUEST_DELAY = float(os.getenv("GEMINI_REQUEST_DELAY", "0"))  # seconds before each request
    GENERATION_TIMEOUT = float(os.getenv("GENERATION_TIMEOUT", "120"))  # seconds per generation call
    
    # Server Configuration
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8000"))
    DEBUG = os.getenv("DEBUG", "true").lower() == "true"
    
    # Input Validation
    MIN_INPUT_LENGTH = int(os.getenv("MIN_INPUT_LENGTH", "10"))
    
    # File Upload Configuration
    MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", "52428800"))  # 50MB
    ALLOWED_MEDIA_TYPES = {
        "application/pdf",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "text/html",
    }
    
    # Session Configuration (documents live in memory only)
    SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "3600"))
    
    # Export Configuration
    PAGE_SIZE = os.getenv("PAGE_SIZE", "A4")
    PAGE_MARGIN_MM = float(os.getenv("PAGE_MARGIN_MM", "25"))
    
    # Logging Configuration
    LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    
    # Create necessary directories
    @classmethod
    def initialize(cls):
        """Create required directories"""
        cls.LOG_DIR.mkdir(exist_ok=True)

# Initialize on import
Config.initialize()
