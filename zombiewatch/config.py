import os
from dataclasses import dataclass, field
from typing import Dict


DEFAULT_DATABASE_URL = 'sqlite:///zombiewatch.db'
DEFAULT_PORT = 5000
DEFAULT_HTTP_TIMEOUT = 5.0


def normalize_database_url(db_url: str) -> str:
    if db_url.startswith('postgres://'):
        db_url = db_url.replace('postgres://', 'postgresql://', 1)
    return db_url


@dataclass
class Config:
    database_url: str = DEFAULT_DATABASE_URL
    port: int = DEFAULT_PORT
    location_service_url: str = ''
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    log_level: str = 'INFO'
    engine_options: Dict = field(default_factory=dict)

    def __post_init__(self):
        self.database_url = normalize_database_url(self.database_url)
        if not self.location_service_url:
            self.location_service_url = f"http://127.0.0.1:{self.port}"
        self.location_service_url = self.location_service_url.rstrip('/')
        if not self.engine_options and not self.database_url.startswith('sqlite'):
            self.engine_options = {
                "pool_recycle": 300,
                "pool_pre_ping": True,
                "connect_args": {"connect_timeout": 10},
            }

    @classmethod
    def from_env(cls, environ=None) -> "Config":
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get('DATABASE_URL') or DEFAULT_DATABASE_URL,
            port=int(env.get('PORT', DEFAULT_PORT)),
            location_service_url=env.get('LOCATION_SERVICE_URL', ''),
            http_timeout=float(env.get('HTTP_TIMEOUT', DEFAULT_HTTP_TIMEOUT)),
            log_level=env.get('LOG_LEVEL', 'INFO').upper(),
        )

    def flask_settings(self) -> Dict:
        settings = {"SQLALCHEMY_DATABASE_URI": self.database_url}
        if self.engine_options:
            settings["SQLALCHEMY_ENGINE_OPTIONS"] = self.engine_options
        return settings
