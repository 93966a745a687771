"""
Application Settings
Environment-driven configuration for the database and AI summary endpoint
"""

import os
import logging
from dataclasses import dataclass, asdict
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = 'sqlite:///ecg_sessions.db'
DEFAULT_GEMINI_API_URL = (
    'https://generativelanguage.googleapis.com/v1beta/models/'
    'gemini-1.5-flash:generateContent'
)


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class AppSettings:
    """
    Runtime settings for the capture service.

    Everything secret or deployment specific comes from the environment;
    defaults are suitable for local development with a SQLite file.
    """

    environment: str = 'development'
    database_url: str = DEFAULT_DATABASE_URL
    gemini_api_key: str = ''
    gemini_api_url: str = DEFAULT_GEMINI_API_URL
    enable_ai_analysis: bool = True
    ai_timeout: float = 30.0
    user_id: str = 'local-user'
    log_level: str = 'INFO'

    @property
    def is_development(self) -> bool:
        return self.environment == 'development'

    @property
    def is_production(self) -> bool:
        return self.environment == 'production'

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AppSettings':
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            AppSettings
        """
        env = os.environ if environ is None else environ

        try:
            ai_timeout = float(env.get('ECG_AI_TIMEOUT', cls.ai_timeout))
        except ValueError:
            logger.warning(f"Invalid ECG_AI_TIMEOUT '{env.get('ECG_AI_TIMEOUT')}', using default")
            ai_timeout = cls.ai_timeout

        return cls(
            environment=env.get('ECG_ENVIRONMENT', cls.environment),
            database_url=env.get('ECG_DATABASE_URL', cls.database_url),
            gemini_api_key=env.get('GEMINI_API_KEY', ''),
            gemini_api_url=env.get('GEMINI_API_URL', cls.gemini_api_url),
            enable_ai_analysis=_env_flag(env.get('ECG_ENABLE_AI_ANALYSIS'), default=True),
            ai_timeout=ai_timeout,
            user_id=env.get('ECG_USER_ID', cls.user_id),
            log_level=env.get('ECG_LOG_LEVEL', cls.log_level),
        )

    @staticmethod
    def is_api_key_valid(api_key: str) -> bool:
        """
        Basic sanity check on an API key.

        Rejects empty keys, keys shorter than 20 characters and obvious
        placeholders such as 'your_api_key_here'.
        """
        if not api_key or len(api_key) < 20:
            return False
        if 'your_' in api_key or '_here' in api_key:
            return False
        return True

    def validate(self) -> bool:
        """
        Check that the configuration is usable for the current environment.

        Development runs are always allowed (AI falls back to canned
        summaries); production requires a valid API key when AI analysis is
        enabled.
        """
        logger.debug(
            f"Validating configuration: environment={self.environment}, "
            f"database={self.database_url.split('://')[0]}, "
            f"gemini={'set' if self.gemini_api_key else 'not set'}"
        )

        if not self.is_production:
            return True

        if self.enable_ai_analysis and not self.is_api_key_valid(self.gemini_api_key):
            logger.warning("⚠ Production configuration missing a valid GEMINI_API_KEY")
            return False
        return True

    def to_dict(self) -> dict:
        """Settings with the API key masked, for logging."""
        data = asdict(self)
        data['gemini_api_key'] = 'set' if self.gemini_api_key else 'not set'
        return data
