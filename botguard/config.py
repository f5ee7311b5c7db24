from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

_DEFAULT_ENV = "development"
_ENV_KEY = "FLASK_ENV"
_VALID_ENVS = {"development", "testing", "staging", "production"}
_FORBIDDEN_ENV_KEYS = ("APP_ENV", "BOTGUARD_ENV", "ENVIRONMENT")
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class EnvironmentInfo:
    name: str
    source: str
    raw_value: str


class EnvReader:
    def __init__(self, data: Mapping[str, str] | None = None):
        self._data = dict(data or os.environ)
        self.warnings: list[str] = []

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def _value(self, key: str) -> str | None:
        value = self._data.get(key)
        if value is None:
            return None
        stripped = value.strip()
        return stripped if stripped else None

    def str(self, key: str, default: str | None = None) -> str | None:
        value = self._value(key)
        return value if value is not None else default

    def int(self, key: str, default: int = 0) -> int:
        value = self._value(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            self.warn(f"{key} expected integer but received {value!r}; falling back to {default}.")
            return default

    def bool(self, key: str, default: bool = False) -> bool:
        value = self._value(key)
        if value is None:
            return default
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        self.warn(f"{key} expected boolean but received {value!r}; falling back to {default}.")
        return default

    def raw(self, key: str) -> str | None:
        return self._data.get(key)


def _normalized_env(value: str | None, *, default: str = _DEFAULT_ENV) -> str:
    if not value:
        return default
    return value.strip().lower() or default


def _normalize_db_url(url: str | None) -> str | None:
    if not url:
        return None
    return 'postgresql://' + url[len('postgres://'):] if url.startswith('postgres://') else url


def _resolve_ratelimit_uri(reader: EnvReader) -> str:
    candidate = reader.str('RATELIMIT_STORAGE_URI')
    if candidate:
        return candidate
    redis_url = reader.str('REDIS_URL')
    if redis_url:
        return redis_url
    return 'memory://'


def _resolve_environment(reader: EnvReader) -> EnvironmentInfo:
    for key in _FORBIDDEN_ENV_KEYS:
        if reader.raw(key) not in (None, ""):
            raise RuntimeError(
                f"{key} is not supported. Set {_ENV_KEY} to one of {sorted(_VALID_ENVS)} instead."
            )

    raw_value = reader.str(_ENV_KEY, _DEFAULT_ENV) or _DEFAULT_ENV
    normalized = _normalized_env(raw_value)
    if normalized not in _VALID_ENVS:
        raise RuntimeError(
            f"Invalid {_ENV_KEY}={raw_value!r}. Expected one of {sorted(_VALID_ENVS)}."
        )
    return EnvironmentInfo(name=normalized, source=_ENV_KEY, raw_value=raw_value)


env = EnvReader()
ENV_INFO = _resolve_environment(env)


class BaseConfig:
    FLASK_ENV = ENV_INFO.name
    SECRET_KEY = env.str('FLASK_SECRET_KEY', 'devkey-please-change-in-production')

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = 64 * 1024
    JSON_SORT_KEYS = False

    REDIS_URL = env.str('REDIS_URL')
    REDIS_POOL_MAX_CONNECTIONS = env.int('REDIS_POOL_MAX_CONNECTIONS', 50)
    REDIS_POOL_TIMEOUT = env.int('REDIS_POOL_TIMEOUT', 5)
    REDIS_SOCKET_TIMEOUT = env.int('REDIS_SOCKET_TIMEOUT', 2)

    RATELIMIT_STORAGE_URI = _resolve_ratelimit_uri(env)
    RATELIMIT_ENABLED = env.bool('RATELIMIT_ENABLED', True)
    RATELIMIT_DEFAULT = env.str('RATELIMIT_DEFAULT', '5000 per hour;1000 per minute')
    RATELIMIT_HEADERS_ENABLED = False

    CACHE_TYPE = env.str('CACHE_TYPE', 'SimpleCache')
    CACHE_DEFAULT_TIMEOUT = env.int('CACHE_DEFAULT_TIMEOUT', 120)
    SECURITY_SUMMARY_CACHE_TTL = env.int('SECURITY_SUMMARY_CACHE_TTL', 30)

    LOG_LEVEL = env.str('LOG_LEVEL', 'WARNING') or 'WARNING'
    LOG_REDACT_PII = env.bool('LOG_REDACT_PII', True)

    ENABLE_PROXY_FIX = env.bool('ENABLE_PROXY_FIX', False)
    CORS_ALLOW_HEADERS = ['authorization', 'x-client-info', 'apikey', 'content-type']

    # Heuristic classifier policy
    BOT_DETECTION_UA_WEIGHT = env.int('BOT_DETECTION_UA_WEIGHT', 30)
    BOT_DETECTION_MISSING_HEADER_WEIGHT = env.int('BOT_DETECTION_MISSING_HEADER_WEIGHT', 15)
    BOT_DETECTION_SHORT_UA_WEIGHT = env.int('BOT_DETECTION_SHORT_UA_WEIGHT', 25)
    BOT_DETECTION_SHORT_UA_LENGTH = env.int('BOT_DETECTION_SHORT_UA_LENGTH', 10)
    BOT_DETECTION_HIGH_RATE_WEIGHT = env.int('BOT_DETECTION_HIGH_RATE_WEIGHT', 30)
    BOT_DETECTION_HIGH_RATE_THRESHOLD = env.int('BOT_DETECTION_HIGH_RATE_THRESHOLD', 50)
    BOT_DETECTION_MISSING_LANGUAGE_WEIGHT = env.int('BOT_DETECTION_MISSING_LANGUAGE_WEIGHT', 20)
    BOT_DETECTION_BOT_THRESHOLD = env.int('BOT_DETECTION_BOT_THRESHOLD', 50)
    BOT_DETECTION_BLOCK_THRESHOLD = env.int('BOT_DETECTION_BLOCK_THRESHOLD', 70)
    BOT_DETECTION_BLOCK_SECONDS = env.int('BOT_DETECTION_BLOCK_SECONDS', 3600)
    BOT_DETECTION_ADMIN_API_KEY = env.str('BOT_DETECTION_ADMIN_API_KEY')

    # Adaptive rate limiter policy
    RATE_LIMIT_WINDOW_SECONDS = env.int('RATE_LIMIT_WINDOW_SECONDS', 60)
    RATE_LIMIT_MAX_REQUESTS = env.int('RATE_LIMIT_MAX_REQUESTS', 60)
    RATE_LIMIT_BLOCK_STEP_SECONDS = env.int('RATE_LIMIT_BLOCK_STEP_SECONDS', 300)
    RATE_LIMIT_BLOCK_MAX_SECONDS = env.int('RATE_LIMIT_BLOCK_MAX_SECONDS', 3600)
    RATE_LIMIT_REDIS_ENABLED = env.bool('RATE_LIMIT_REDIS_ENABLED', True)
    RATE_LIMIT_REDIS_PREFIX = env.str('RATE_LIMIT_REDIS_PREFIX', 'botguard:v1') or 'botguard:v1'

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': env.int('SQLALCHEMY_POOL_SIZE', 20),
        'max_overflow': env.int('SQLALCHEMY_MAX_OVERFLOW', 20),
        'pool_pre_ping': True,
        'pool_recycle': env.int('SQLALCHEMY_POOL_RECYCLE', 1800),
        'pool_timeout': env.int('SQLALCHEMY_POOL_TIMEOUT', 30),
    }


class DevelopmentConfig(BaseConfig):
    ENV = 'development'
    DEBUG = True

    _db_url = _normalize_db_url(env.str('DATABASE_URL'))
    if _db_url:
        SQLALCHEMY_DATABASE_URI = _db_url
    else:
        instance_path = os.path.join(os.path.abspath(os.path.dirname(__file__)), '..', 'instance')
        os.makedirs(instance_path, exist_ok=True)
        SQLALCHEMY_DATABASE_URI = 'sqlite:///' + os.path.join(instance_path, 'botguard.db')

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 3600,
    }
    RATELIMIT_STORAGE_URI = env.str('RATELIMIT_STORAGE_URI') or 'memory://'


class TestingConfig(BaseConfig):
    ENV = 'testing'
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
    }
    RATELIMIT_STORAGE_URI = 'memory://'
    RATELIMIT_ENABLED = False


class StagingConfig(BaseConfig):
    ENV = 'staging'
    DEBUG = False
    TESTING = False
    SQLALCHEMY_DATABASE_URI = _normalize_db_url(env.str('DATABASE_URL'))
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'max_overflow': 20,
        'pool_pre_ping': True,
        'pool_recycle': 1800,
    }
    LOG_LEVEL = env.str('LOG_LEVEL', 'INFO') or 'INFO'


class ProductionConfig(BaseConfig):
    ENV = 'production'
    DEBUG = False
    TESTING = False
    SQLALCHEMY_DATABASE_URI = _normalize_db_url(env.str('DATABASE_URL'))
    LOG_LEVEL = env.str('LOG_LEVEL', 'INFO') or 'INFO'


config_map = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'staging': StagingConfig,
    'production': ProductionConfig,
}


def get_active_config_name() -> str:
    return ENV_INFO.name


def get_config():
    return config_map[get_active_config_name()]


Config = config_map[ENV_INFO.name]
ENV_DIAGNOSTICS = {
    'active': ENV_INFO.name,
    'source': ENV_INFO.source,
    'variables': {ENV_INFO.source: ENV_INFO.raw_value},
    'warnings': tuple(env.warnings),
}
