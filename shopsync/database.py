# shopsync/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from shopsync.core.config import settings

def make_engine(database_url: str):
    """Создание движка SQLAlchemy под локальное хранилище"""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory база должна жить в одном соединении
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)

    return create_engine(
        database_url,
        pool_pre_ping=True,      # Проверка соединения
        pool_recycle=300,        # Пересоздание каждые 5 мин
        echo=False
    )

engine = make_engine(settings.DATABASE_URL)

# Фабрика сессий
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)

# Базовый класс для моделей
Base = declarative_base()

def create_tables(bind=None):
    # Модели должны быть импортированы до create_all
    import shopsync.models.entities  # noqa: F401
    import shopsync.models.integration  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
