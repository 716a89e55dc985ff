import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Config:
    env: str
    log_level: str
    database_path: str
    embedding_dim: int
    signing_secret: str | None
    storage_public_base_url: str
    storage_bucket: str
    signed_url_ttl_s: int

    def is_dev(self) -> bool:
        return self.env in {"dev", "local", "test"}

    @classmethod
    def from_env(cls) -> "Config":
        env = os.getenv("ENV", "local").strip().lower() or "local"
        database_path = os.getenv(
            "CANOPY_DB_PATH", "./canopy_data/canopy.duckdb"
        ).strip()
        if not database_path:
            raise ValueError("CANOPY_DB_PATH must not be empty")

        embedding_dim = _parse_int(os.getenv("EMBEDDING_DIM", "64"), "EMBEDDING_DIM")
        if embedding_dim < 1:
            raise ValueError("EMBEDDING_DIM must be >= 1")

        signed_url_ttl_s = _parse_int(
            os.getenv("SIGNED_URL_TTL_S", "3600"), "SIGNED_URL_TTL_S"
        )
        if signed_url_ttl_s < 1:
            raise ValueError("SIGNED_URL_TTL_S must be >= 1")

        return cls(
            env=env,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            database_path=database_path,
            embedding_dim=embedding_dim,
            signing_secret=os.getenv("SIGNING_SECRET", "").strip() or None,
            storage_public_base_url=os.getenv(
                "STORAGE_PUBLIC_BASE_URL", "http://localhost:8090/storage"
            ).rstrip("/"),
            storage_bucket=os.getenv("STORAGE_BUCKET", "documents").strip()
            or "documents",
            signed_url_ttl_s=signed_url_ttl_s,
        )


def _parse_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
