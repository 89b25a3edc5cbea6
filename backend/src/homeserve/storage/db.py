"""Database connection and session management."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from homeserve.logging_config import get_logger
from homeserve.settings import settings
from homeserve.storage.models import Base

logger = get_logger(__name__)


def _import_models() -> None:
    """Register every mapped table on ``Base.metadata``."""
    import homeserve.auth.models  # noqa: F401
    import homeserve.notifications.models  # noqa: F401
    import homeserve.referral.models  # noqa: F401


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        """Initialize database connection.

        Args:
            database_url: Database URL (defaults to settings)
        """
        self.database_url = database_url or settings.database_url
        connect_args = {}
        if self.database_url.startswith("sqlite"):
            # FastAPI runs sync endpoints in a threadpool
            connect_args["check_same_thread"] = False
        self.engine = create_engine(
            self.database_url,
            echo=False,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info("database_initialized", url=self.engine.url.render_as_string(hide_password=True))

    def create_tables(self) -> None:
        """Create all tables in the database."""
        _import_models()
        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    @contextmanager
    def session(self, isolation_level: str | None = None) -> Generator[Session, None, None]:
        """Provide a transactional scope for database operations.

        Args:
            isolation_level: Optional isolation level for this transaction

        Yields:
            Database session
        """
        session = self.SessionLocal()
        try:
            if isolation_level:
                session.connection(execution_options={"isolation_level": isolation_level})
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Global database instance
db = Database()
