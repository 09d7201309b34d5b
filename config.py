import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        timezone: str,
        secret_key: str,
        session_max_age_secs: int,
        backup_dir: Path,
        log_level: str,
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.session_max_age_secs = session_max_age_secs
        self.backup_dir = backup_dir
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SMARTSPEND_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "smartspend.db"
    database_url = os.getenv("SMARTSPEND_DATABASE_URL", f"sqlite:///{default_db}")
    # Empty means "use the server's local clock".
    timezone = os.getenv("SMARTSPEND_TIMEZONE", "")
    secret_key = os.getenv(
        "SMARTSPEND_SECRET_KEY",
        "3f0c2a9d5be84e71a6f1c0d7e2b9a4c85d6e7f8091a2b3c4d5e6f708192a3b4c",
    )
    session_max_age_secs = int(
        os.getenv("SMARTSPEND_SESSION_MAX_AGE_SECS", str(14 * 24 * 3600))
    )
    backup_dir = Path(
        os.getenv("SMARTSPEND_BACKUP_DIR", str(data_dir / "backups"))
    ).resolve()
    log_level = os.getenv("SMARTSPEND_LOG_LEVEL", "INFO").upper()
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        session_max_age_secs=session_max_age_secs,
        backup_dir=backup_dir,
        log_level=log_level,
    )
