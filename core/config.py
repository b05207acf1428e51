"""
Configuration management for Script Asset Mirror
Settings file defaults with environment variable overrides
"""
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional, List

from .exceptions import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_PROXY_LIST_URL = (
    "https://cdn.jsdelivr.net/gh/proxifly/free-proxy-list@main/proxies/countries/US/data.json"
)

# Environment variable -> dotted settings key
ENV_OVERRIDES = {
    'S3_ACCESS_KEY_ID': 's3.access_key_id',
    'S3_SECRET_ACCESS_KEY': 's3.secret_access_key',
    'S3_REGION': 's3.region',
    'S3_BUCKET': 's3.bucket',
    'S3_ENDPOINT': 's3.endpoint',
    'S3_PUBLIC_BASE_URL': 's3.public_base_url',
    'S3_FORCE_PATH_STYLE': 's3.force_path_style',
    'S3_PATH_PREFIX': 's3.path_prefix',
    'USE_US_PROXY': 'proxy.enabled',
    'US_PROXY_LIST_URL': 'proxy.list_url',
    'LOCAL_MIRROR_ROOT': 'storage.local_root',
    'LOG_LEVEL': 'logging.level',
    'LOG_FILE': 'logging.file',
}

BOOLEAN_ENV = {'S3_FORCE_PATH_STYLE', 'USE_US_PROXY'}


def parse_bool(value: Any) -> Optional[bool]:
    """Parse the true/1/false/0 flag convention; anything else is None"""
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if normalized in ('true', '1', 'on', 'yes'):
        return True
    if normalized in ('false', '0', 'off', 'no'):
        return False
    return None


def _has_value(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) > 0


@dataclass(frozen=True)
class S3Settings:
    """Resolved bucket storage credentials and addressing"""
    access_key_id: str
    secret_access_key: str
    region: str
    bucket: str
    endpoint: Optional[str] = None
    public_base_url: Optional[str] = None
    force_path_style: bool = False
    path_prefix: Optional[str] = None


class Config:
    """Configuration manager: settings.json layered under environment overrides"""

    def __init__(self, config_dir: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        if config_dir is None:
            config_dir = os.environ.get('MIRROR_CONFIG_DIR', str(PROJECT_ROOT / 'config'))
        self.config_dir = Path(config_dir)
        self._environ = os.environ if environ is None else environ
        self._settings: Dict[str, Any] = {}
        self.load_configs()

    def load_configs(self):
        """Load settings.json (optional) then apply environment overrides"""
        settings_file = self.config_dir / "settings.json"
        self._settings = {}
        if settings_file.exists():
            try:
                with open(settings_file, 'r', encoding='utf-8') as f:
                    self._settings = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in config file {settings_file}: {e}", component='config')
            if not isinstance(self._settings, dict):
                raise ConfigurationError(f"Settings file must hold a JSON object: {settings_file}", component='config')

        self._apply_env_overrides()

    def _apply_env_overrides(self):
        for env_name, key in ENV_OVERRIDES.items():
            raw = self._environ.get(env_name)
            if raw is None:
                continue
            if env_name in BOOLEAN_ENV:
                parsed = parse_bool(raw)
                if parsed is None:
                    continue
                self.set(key, parsed)
            else:
                self.set(key, raw)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dotted key path"""
        value = self._settings

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any):
        """Set a value in memory by dotted key path"""
        keys = key.split('.')
        config_dict = self._settings

        for k in keys[:-1]:
            if not isinstance(config_dict.get(k), dict):
                config_dict[k] = {}
            config_dict = config_dict[k]

        config_dict[keys[-1]] = value

    # Download settings
    @property
    def request_timeout(self) -> float:
        return float(self.get('download.request_timeout', 10))

    @property
    def max_proxy_attempts(self) -> int:
        return int(self.get('download.max_proxy_attempts', 5))

    @property
    def direct_concurrency(self) -> int:
        return int(self.get('download.direct_concurrency', 4))

    @property
    def proxy_concurrency(self) -> int:
        return int(self.get('download.proxy_concurrency', 6))

    @property
    def user_agent(self) -> str:
        return self.get('download.user_agent', 'ScriptAssetMirror/1.0')

    @property
    def asset_cache_control(self) -> str:
        return self.get('download.cache_control', 'public, max-age=31536000, immutable')

    # Proxy settings
    @property
    def proxy_enabled(self) -> bool:
        return bool(parse_bool(self.get('proxy.enabled', False)))

    @property
    def proxy_list_url(self) -> str:
        return self.get('proxy.list_url') or DEFAULT_PROXY_LIST_URL

    @property
    def proxy_list_timeout(self) -> float:
        return float(self.get('proxy.list_timeout', 15))

    # Storage settings
    @property
    def local_root(self) -> Path:
        root = Path(self.get('storage.local_root', 'public/local-mirror'))
        return root if root.is_absolute() else PROJECT_ROOT / root

    @property
    def local_public_prefix(self) -> str:
        return self.get('storage.local_public_prefix', '/local-mirror/')

    @property
    def json_cache_control(self) -> str:
        return self.get('storage.json_cache_control', 'no-cache')

    # Logging settings
    @property
    def log_level(self) -> str:
        return self.get('logging.level', 'INFO')

    @property
    def log_file(self) -> Optional[str]:
        return self.get('logging.file')

    def is_s3_configured(self) -> bool:
        return all(
            _has_value(self.get(f's3.{name}'))
            for name in ('access_key_id', 'secret_access_key', 'region', 'bucket')
        )

    def require_s3_config(self) -> S3Settings:
        """Return bucket settings or raise naming every missing variable"""
        required = {
            'S3_ACCESS_KEY_ID': 's3.access_key_id',
            'S3_SECRET_ACCESS_KEY': 's3.secret_access_key',
            'S3_REGION': 's3.region',
            'S3_BUCKET': 's3.bucket',
        }
        missing = [env_name for env_name, key in required.items() if not _has_value(self.get(key))]
        if missing:
            raise ConfigurationError(
                f"Missing required S3 configuration values: {', '.join(missing)}",
                component='config',
                details={'missing': missing}
            )

        return S3Settings(
            access_key_id=self.get('s3.access_key_id'),
            secret_access_key=self.get('s3.secret_access_key'),
            region=self.get('s3.region'),
            bucket=self.get('s3.bucket'),
            endpoint=self.get('s3.endpoint') or None,
            public_base_url=self.get('s3.public_base_url') or None,
            force_path_style=bool(parse_bool(self.get('s3.force_path_style', False))),
            path_prefix=self.get('s3.path_prefix') or None,
        )

    def validate_config(self) -> List[str]:
        """Validate configuration settings and return list of issues"""
        issues = []

        if self.request_timeout <= 0:
            issues.append("Request timeout must be positive")

        if self.max_proxy_attempts <= 0:
            issues.append("Max proxy attempts must be positive")

        if self.direct_concurrency <= 0:
            issues.append("Direct concurrency must be positive")

        if self.proxy_concurrency <= 0:
            issues.append("Proxy concurrency must be positive")

        endpoint = self.get('s3.endpoint')
        if endpoint and not str(endpoint).startswith(('http://', 'https://')):
            issues.append("S3 endpoint must be an http(s) URL")

        return issues

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary for logging/debugging"""
        return {
            'download': {
                'timeout': self.request_timeout,
                'direct_concurrency': self.direct_concurrency,
                'proxy_concurrency': self.proxy_concurrency,
                'max_proxy_attempts': self.max_proxy_attempts
            },
            'proxy': {
                'enabled': self.proxy_enabled,
                'list_url': self.proxy_list_url
            },
            'storage': {
                'mode': 's3' if self.is_s3_configured() else 'local',
                'bucket': self.get('s3.bucket'),
                'local_root': str(self.local_root)
            },
            'logging': {
                'level': self.log_level,
                'file_enabled': bool(self.log_file)
            }
        }


# Global config instance
config = Config()
