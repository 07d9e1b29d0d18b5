import logging

from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text, inspect
from .config import DATABASE_URL

logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True)

def init_db():
    from .models import Document, SigningRequest, Signer, Event, FinalArtifact
    SQLModel.metadata.create_all(engine)
    _ensure_document_sign_id_unique_index()

def get_session():
    with Session(engine) as session:
        yield session

def _ensure_document_sign_id_unique_index():
    inspector = inspect(engine)
    try:
        indexes = inspector.get_indexes("signingrequest")
    except Exception:
        return
    if any(idx.get("name") == "uq_document_sign_id" for idx in indexes):
        return
    with engine.begin() as conn:
        duplicates = conn.execute(
            text(
                "SELECT document_sign_id FROM signingrequest "
                "WHERE document_sign_id IS NOT NULL "
                "GROUP BY document_sign_id HAVING COUNT(*) > 1"
            )
        ).fetchall()
        if duplicates:
            ids = ", ".join(row[0] for row in duplicates if row[0])
            logger.warning(
                "duplicate document sign ids detected; resolve before enforcing uniqueness: %s",
                ids,
            )
            return
        conn.execute(
            text(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_document_sign_id "
                "ON signingrequest(document_sign_id)"
            )
        )
