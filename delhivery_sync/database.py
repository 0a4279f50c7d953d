from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker
import os
from pathlib import Path
from typing import Optional

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_DATABASE_URL = "sqlite:///delhivery_sync.db"


def resolve_database_url(raw: Optional[str] = None) -> str:
    """
    Turn DATABASE_URL into something create_engine accepts.

    Supabase/Heroku style postgres:// URLs get the postgresql:// scheme, and a
    relative SQLite file is anchored to the package directory so the API, the
    reconcile threads and seed_db.py share one database wherever they start.
    """
    url = (raw or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL).strip()
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]

    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return url

    db_file = parsed.database
    if not db_file or db_file == ":memory:" or os.path.isabs(db_file):
        return url
    return parsed.set(database=str((PACKAGE_DIR / db_file).resolve())).render_as_string(hide_password=False)


def _engine_kwargs(url: str) -> dict:
    # Reconciliation runs in worker threads, so SQLite connections cross threads.
    if make_url(url).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}
    return {}


DATABASE_URL = resolve_database_url()

engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
