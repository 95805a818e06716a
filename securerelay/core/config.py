"""
Relay Configuration Module
==========================

Provides immutable, environment-aware configuration for the file relay.

Security Features:
- Immutable configuration after initialization
- Environment variable override support
- No secrets accepted from the generic override parser
- Type-safe configuration access
- OS-aware path handling
"""

from __future__ import annotations

import hashlib
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final, Mapping, Optional


# Security Constants
_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "passcode", "secret", "key", "token",
    "private", "credential", "auth", "salt",
})

DEFAULT_ALLOWED_FORMATS: Final[Mapping[str, str]] = MappingProxyType({
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".pdf": "application/pdf",
    ".rar": "application/x-rar-compressed",
    ".txt": "text/plain",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
})

# Stored envelopes were written with this literal, changing it orphans them.
LEGACY_SALT: Final[bytes] = b"salt"


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _get_default_data_dir() -> Path:
    """Get OS-appropriate default data directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif system == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:  # Linux and others
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / "SecureRelay"


def _get_default_log_dir() -> Path:
    """Get OS-appropriate default log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "SecureRelay" / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / "SecureRelay"
    else:  # Linux and others
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / "SecureRelay" / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable path configuration with OS-aware defaults."""

    data_dir: Path = field(default_factory=_get_default_data_dir)
    log_dir: Path = field(default_factory=_get_default_log_dir)
    blob_dir: Optional[Path] = None
    database_path: Optional[Path] = None

    def __post_init__(self) -> None:
        """Fill derived paths and validate them."""
        if self.blob_dir is None:
            object.__setattr__(self, "blob_dir", self.data_dir / "blobs")
        if self.database_path is None:
            object.__setattr__(self, "database_path", self.data_dir / "relay.db")

        for field_name in ["data_dir", "log_dir", "blob_dir", "database_path"]:
            path = getattr(self, field_name)
            if not path.is_absolute():
                raise ValueError(f"{field_name} must be an absolute path: {path}")


@dataclass(frozen=True, slots=True)
class CryptoConfig:
    """Immutable envelope encryption configuration."""

    kdf: str = "scrypt"
    salt: bytes = LEGACY_SALT
    key_length: int = 32  # 256 bits for AES-256
    iv_length: int = 16  # one AES block
    scrypt_n: int = 16384
    scrypt_r: int = 8
    scrypt_p: int = 1
    authenticated: bool = True

    def __post_init__(self) -> None:
        """Validate crypto settings."""
        if self.kdf not in {"scrypt", "argon2id"}:
            raise ValueError(f"Unsupported key derivation function: {self.kdf}")
        if not self.salt:
            raise ValueError("Salt cannot be empty")
        if self.key_length != 32:
            raise ValueError("Key length must be 32 bytes for AES-256")
        if self.iv_length != 16:
            raise ValueError("IV length must be 16 bytes for AES-CBC")
        if self.scrypt_n < 2 or self.scrypt_n & (self.scrypt_n - 1):
            raise ValueError("scrypt_n must be a power of two greater than 1")

    def __repr__(self) -> str:
        """Safe representation without the salt."""
        return f"CryptoConfig(kdf={self.kdf!r}, authenticated={self.authenticated})"


@dataclass(frozen=True, slots=True)
class RetentionConfig:
    """Immutable record lifetime and sweep configuration."""

    expiry_seconds: int = 48 * 60 * 60
    sweep_interval_seconds: float = 60 * 60
    ticket_ttl_seconds: int = 10 * 60

    def __post_init__(self) -> None:
        """Validate retention settings."""
        if self.expiry_seconds <= 0:
            raise ValueError("Expiry window must be positive")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")
        if self.ticket_ttl_seconds <= 0:
            raise ValueError("Ticket lifetime must be positive")


@dataclass(frozen=True, slots=True)
class UploadConfig:
    """Immutable upload limits and the extension allow-list."""

    max_upload_bytes: int = 500 * 1024 * 1024  # 500 MiB
    max_files: int = 1
    allowed_formats: Mapping[str, str] = field(default_factory=lambda: DEFAULT_ALLOWED_FORMATS)

    def __post_init__(self) -> None:
        """Normalize the allow-list and validate limits."""
        if self.max_upload_bytes <= 0:
            raise ValueError("Maximum upload size must be positive")
        if self.max_files != 1:
            raise ValueError("Exactly one file per upload is supported")

        normalized = {}
        for extension, mime_type in self.allowed_formats.items():
            extension = extension.lower()
            if not extension.startswith("."):
                extension = "." + extension
            normalized[extension] = mime_type
        if not normalized:
            raise ValueError("At least one file format must be allowed")
        object.__setattr__(self, "allowed_formats", MappingProxyType(normalized))


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """
    Immutable blob backend selection.

    S3 credentials are never read here; boto3 resolves them from its own
    chain (AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY, profiles, roles).
    """

    backend: str = "filesystem"
    s3_bucket: Optional[str] = None
    s3_prefix: str = ""
    s3_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = None  # MinIO or another S3-compatible service

    def __post_init__(self) -> None:
        """Validate backend selection."""
        if self.backend not in {"filesystem", "s3"}:
            raise ValueError(f"Unsupported blob backend: {self.backend}")
        if self.backend == "s3" and not self.s3_bucket:
            raise ValueError("The s3 backend requires a bucket name")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = False
    enable_json: bool = False

    def __post_init__(self) -> None:
        """Validate logging settings."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Immutable application configuration."""

    app_name: str = "SecureRelay"
    version: str = "0.1.0"
    host: str = "0.0.0.0"
    port: int = 3000
    behind_proxy: bool = False  # trust X-Forwarded-* from one gateway hop
    debug_mode: bool = False  # Always False in production

    def __post_init__(self) -> None:
        """Validate and enforce security rules."""
        if self.debug_mode:
            import warnings
            warnings.warn(
                "Debug mode is enabled. This should NEVER be used in production.",
                SecurityWarning,
                stacklevel=2
            )


class RelayConfig:
    """
    Centralized, immutable configuration with environment override support.

    Usage:
        config = RelayConfig.load()
        blob_dir = config.paths.blob_dir
        expiry = config.retention.expiry_seconds

    Tests construct it directly to vary the salt, the allow-list or the
    expiry window without touching the environment.
    """

    __slots__ = (
        "_paths", "_crypto", "_retention", "_upload", "_storage", "_logging", "_app",
        "_database_url", "_frozen", "_config_hash",
    )

    _instance: Optional[RelayConfig] = None

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        crypto: Optional[CryptoConfig] = None,
        retention: Optional[RetentionConfig] = None,
        upload: Optional[UploadConfig] = None,
        storage: Optional[StorageConfig] = None,
        logging: Optional[LoggingConfig] = None,
        app: Optional[AppConfig] = None,
        database_url: Optional[str] = None,
    ) -> None:
        """Initialize configuration. Use RelayConfig.load() for standard initialization."""
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_crypto", crypto or CryptoConfig())
        object.__setattr__(self, "_retention", retention or RetentionConfig())
        object.__setattr__(self, "_upload", upload or UploadConfig())
        object.__setattr__(self, "_storage", storage or StorageConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_app", app or AppConfig())
        object.__setattr__(self, "_database_url", database_url)
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        """Compute a hash of the configuration for integrity checking."""
        config_str = (
            f"{self._paths}|{self._crypto}|{self._retention}|"
            f"{self._upload}|{self._storage}|{self._logging}|{self._app}"
        )
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def crypto(self) -> CryptoConfig:
        return self._crypto

    @property
    def retention(self) -> RetentionConfig:
        return self._retention

    @property
    def upload(self) -> UploadConfig:
        return self._upload

    @property
    def storage(self) -> StorageConfig:
        return self._storage

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def app(self) -> AppConfig:
        return self._app

    @property
    def database_url(self) -> Optional[str]:
        """PostgreSQL DSN, or None for the local SQLite record store."""
        return self._database_url

    @property
    def config_hash(self) -> str:
        return self._config_hash

    @classmethod
    def load(cls, env_prefix: str = "SECURERELAY") -> RelayConfig:
        """
        Load configuration with environment variable overrides.

        Environment variables should be prefixed with SECURERELAY_ and use
        double underscores for nested values.

        Examples:
            SECURERELAY_LOGGING__LEVEL=DEBUG
            SECURERELAY_RETENTION__EXPIRY_SECONDS=3600
            SECURERELAY_PATHS__DATA_DIR=/srv/relay
            SECURERELAY_STORAGE__BACKEND=s3
            SECURERELAY_STORAGE__S3_BUCKET=relay-blobs
            SECURERELAY_DATABASE_URL=postgresql://relay@db/relay

        Args:
            env_prefix: Prefix for environment variables (default: SECURERELAY)

        Returns:
            Configured RelayConfig instance
        """
        env_overrides = cls._parse_env_overrides(env_prefix)

        paths_kwargs: dict[str, Any] = {}
        for name in ("data_dir", "log_dir", "blob_dir", "database_path"):
            if f"paths.{name}" in env_overrides:
                paths_kwargs[name] = Path(env_overrides[f"paths.{name}"])

        crypto_kwargs: dict[str, Any] = {}
        if "crypto.kdf" in env_overrides:
            crypto_kwargs["kdf"] = env_overrides["crypto.kdf"]
        if "crypto.authenticated" in env_overrides:
            crypto_kwargs["authenticated"] = env_overrides["crypto.authenticated"].lower() == "true"
        for name in ("scrypt_n", "scrypt_r", "scrypt_p"):
            if f"crypto.{name}" in env_overrides:
                crypto_kwargs[name] = int(env_overrides[f"crypto.{name}"])

        retention_kwargs: dict[str, Any] = {}
        if "retention.expiry_seconds" in env_overrides:
            retention_kwargs["expiry_seconds"] = int(env_overrides["retention.expiry_seconds"])
        if "retention.sweep_interval_seconds" in env_overrides:
            retention_kwargs["sweep_interval_seconds"] = float(
                env_overrides["retention.sweep_interval_seconds"]
            )
        if "retention.ticket_ttl_seconds" in env_overrides:
            retention_kwargs["ticket_ttl_seconds"] = int(env_overrides["retention.ticket_ttl_seconds"])

        upload_kwargs: dict[str, Any] = {}
        if "upload.max_upload_bytes" in env_overrides:
            upload_kwargs["max_upload_bytes"] = int(env_overrides["upload.max_upload_bytes"])

        storage_kwargs: dict[str, Any] = {}
        for name in ("backend", "s3_bucket", "s3_prefix", "s3_region", "s3_endpoint_url"):
            if f"storage.{name}" in env_overrides:
                storage_kwargs[name] = env_overrides[f"storage.{name}"]

        logging_kwargs: dict[str, Any] = {}
        if "logging.level" in env_overrides:
            logging_kwargs["level"] = env_overrides["logging.level"]
        if "logging.enable_console" in env_overrides:
            logging_kwargs["enable_console"] = env_overrides["logging.enable_console"].lower() == "true"
        if "logging.enable_file" in env_overrides:
            logging_kwargs["enable_file"] = env_overrides["logging.enable_file"].lower() == "true"
        if "logging.enable_json" in env_overrides:
            logging_kwargs["enable_json"] = env_overrides["logging.enable_json"].lower() == "true"

        # debug_mode cannot be overridden via env
        app_kwargs: dict[str, Any] = {}
        if "app.host" in env_overrides:
            app_kwargs["host"] = env_overrides["app.host"]
        if "app.port" in env_overrides:
            app_kwargs["port"] = int(env_overrides["app.port"])
        if "app.behind_proxy" in env_overrides:
            app_kwargs["behind_proxy"] = env_overrides["app.behind_proxy"].lower() == "true"

        return cls(
            paths=PathConfig(**paths_kwargs) if paths_kwargs else None,
            crypto=CryptoConfig(**crypto_kwargs) if crypto_kwargs else None,
            retention=RetentionConfig(**retention_kwargs) if retention_kwargs else None,
            upload=UploadConfig(**upload_kwargs) if upload_kwargs else None,
            storage=StorageConfig(**storage_kwargs) if storage_kwargs else None,
            logging=LoggingConfig(**logging_kwargs) if logging_kwargs else None,
            app=AppConfig(**app_kwargs) if app_kwargs else None,
            database_url=env_overrides.get("database_url") or None,
        )

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in os.environ.items():
            if key.startswith(prefix_upper):
                # Convert SECURERELAY_SECTION__KEY to section.key
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                # SECURITY: Skip sensitive keys from environment
                if _is_sensitive_key(config_key):
                    continue

                overrides[config_key] = value

        return overrides

    @classmethod
    def get_instance(cls) -> RelayConfig:
        """Get or create the singleton configuration instance."""
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance. Use only for testing."""
        cls._instance = None

    def ensure_directories(self) -> None:
        """Create all required directories with secure permissions."""
        import stat

        directories = [
            self._paths.data_dir,
            self._paths.database_path.parent,
        ]
        if self._storage.backend == "filesystem":
            directories.append(self._paths.blob_dir)
        if self._logging.enable_file:
            directories.append(self._paths.log_dir)

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

            # Set restrictive permissions on Unix-like systems
            if platform.system().lower() != "windows":
                directory.chmod(stat.S_IRWXU)  # 700 - owner only

    def __repr__(self) -> str:
        """Safe string representation without sensitive data."""
        return f"RelayConfig(hash={self._config_hash}, app={self._app.app_name})"

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification after initialization."""
        if hasattr(self, "_frozen") and self._frozen:
            raise AttributeError("RelayConfig is immutable after initialization")
        super().__setattr__(name, value)


class SecurityWarning(UserWarning):
    """Warning for security-related configuration issues."""
    pass
