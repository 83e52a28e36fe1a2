#!/usr/bin/env python3
"""
Shard System Configuration
Environment-driven settings for the persistence collaborator, the completion
service, expansion defaults and logging.
"""
import logging
import os

from dotenv import load_dotenv

from shard_system.core.datashapes import ModelConfig

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes', 'on')


class ShardConfig:
    """Configuration for the shard conversation core"""

    # Persistence collaborator (HTTP backend)
    API_URL = os.getenv('SHARD_API_URL', 'http://localhost:8010')
    API_TIMEOUT = int(os.getenv('SHARD_API_TIMEOUT', 30))

    # File-backed collaborator
    STORE_FILE = os.getenv(
        'SHARD_STORE_FILE',
        os.path.expanduser('~/.local/share/shard_system/points.json')
    )

    # Completion service
    LLM_PROVIDER = os.getenv('SHARD_LLM_PROVIDER', 'lmstudio')
    LLM_URL = os.getenv('SHARD_LLM_URL', 'http://localhost:1234')
    LLM_MODEL = os.getenv('SHARD_LLM_MODEL', 'local-model')
    LLM_TEMPERATURE = float(os.getenv('SHARD_LLM_TEMPERATURE', 0.7))
    LLM_MAX_TOKENS = int(os.getenv('SHARD_LLM_MAX_TOKENS', 1024))
    LLM_TIMEOUT = int(os.getenv('SHARD_LLM_TIMEOUT', 300))
    LLM_SYSTEM_PROMPT = os.getenv('SHARD_LLM_SYSTEM_PROMPT', '')

    # Tree display
    DEFAULT_EXPANDED = _env_bool('SHARD_DEFAULT_EXPANDED', 'true')

    # Logging Configuration
    LOG_LEVEL = os.getenv('SHARD_LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('SHARD_LOG_FILE', '')

    DEBUG = False

    @classmethod
    def get_model_config(cls) -> ModelConfig:
        """Default model settings for completePrompt"""
        return ModelConfig(
            model=cls.LLM_MODEL,
            temperature=cls.LLM_TEMPERATURE,
            max_tokens=cls.LLM_MAX_TOKENS,
            system_prompt=cls.LLM_SYSTEM_PROMPT or None,
        )

    @classmethod
    def validate_config(cls):
        """Validate configuration settings"""
        issues = []

        if cls.API_TIMEOUT <= 0:
            issues.append("API_TIMEOUT must be positive")

        if cls.LLM_PROVIDER not in ('lmstudio', 'ollama'):
            issues.append("LLM_PROVIDER must be 'lmstudio' or 'ollama'")

        if cls.LLM_TEMPERATURE < 0 or cls.LLM_TEMPERATURE > 2:
            issues.append("LLM_TEMPERATURE must be between 0 and 2")

        if cls.LLM_MAX_TOKENS < 1:
            issues.append("LLM_MAX_TOKENS must be at least 1")

        if cls.LOG_LEVEL.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            issues.append(f"LOG_LEVEL '{cls.LOG_LEVEL}' is not a logging level")

        return issues


# Environment-specific configurations
class DevelopmentConfig(ShardConfig):
    """Development environment configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(ShardConfig):
    """Production environment configuration"""
    DEBUG = False
    LOG_LEVEL = 'INFO'


class TestConfig(ShardConfig):
    """Test environment configuration"""
    __test__ = False
    DEBUG = True
    LOG_LEVEL = 'DEBUG'
    LOG_FILE = ''
    API_TIMEOUT = 5
    LLM_TIMEOUT = 5
    DEFAULT_EXPANDED = True


# Configuration factory
def get_config(env=None):
    """Get configuration based on environment"""
    env = env or os.getenv('SHARD_ENV', 'development')

    configs = {
        'development': DevelopmentConfig,
        'production': ProductionConfig,
        'test': TestConfig
    }

    return configs.get(env, DevelopmentConfig)


def configure_logging(config=None) -> logging.Logger:
    """
    Install handlers on the package logger.

    Safe to call more than once - handlers are only added the first time.
    """
    config = config or get_config()
    package_logger = logging.getLogger('shard_system')
    package_logger.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))

    if not package_logger.handlers:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        package_logger.addHandler(stream_handler)

        if config.LOG_FILE:
            os.makedirs(os.path.dirname(os.path.abspath(config.LOG_FILE)), exist_ok=True)
            file_handler = logging.FileHandler(config.LOG_FILE)
            file_handler.setFormatter(formatter)
            package_logger.addHandler(file_handler)

    return package_logger
