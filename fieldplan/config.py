import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError:
        return int(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


def _get_choice(name: str, default: str, choices: set[str]) -> str:
    raw = os.getenv(name, default).strip().lower()
    return raw if raw in choices else default


MOVE_STRATEGIES = {"update", "reinsert"}


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fieldplan.db")
    DB_AUTO_CREATE_ALL = _get_bool("DB_AUTO_CREATE_ALL", False)
    DB_SCHEMA_CHECK_ON_STARTUP = _get_bool("DB_SCHEMA_CHECK_ON_STARTUP", True)

    DEFAULT_VISIT_TYPE = os.getenv("DEFAULT_VISIT_TYPE", "periodic").strip().lower()
    # "update" moves a visit with one atomic UPDATE; "reinsert" keeps the
    # legacy delete-then-insert sequence.
    MOVE_STRATEGY = _get_choice("MOVE_STRATEGY", "update", MOVE_STRATEGIES)
    TRANSFER_REQUIRE_CONFIRM = _get_bool("TRANSFER_REQUIRE_CONFIRM", True)

    IDEMPOTENCY_ENABLED = _get_bool("IDEMPOTENCY_ENABLED", True)
    IDEMPOTENCY_RETENTION_HOURS = _get_int("IDEMPOTENCY_RETENTION_HOURS", 48)

    SECURITY_HEADERS_ENABLED = _get_bool("SECURITY_HEADERS_ENABLED", True)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()


settings = Settings()
