"""
DB adapter contract.

The core does not persist anything itself; it only validates and connects the
adapters listed in ``DB_CONNECTIONS``:

    {"default": {"adapter": SqlAlchemyAdapter(), "url": "sqlite:///cms.db"}}

``SqlAlchemyAdapter`` is the adapter shipped with the core.
"""
from __future__ import annotations

import logging
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.cms.errors import AdapterContractError, CmsError

logger = logging.getLogger(__name__)

ADAPTER_METHODS = {
    "connect": "connect(config) - method to connect to the DB",
    "get_connection": "get_connection() - method to return the existing connection",
    "get_connection_name": "get_connection_name() - method to get the connection name",
    "setup_model": "setup_model() - method to set up a model",
}


def validate_adapter(name: str, adapter: Any) -> None:
    for method, sample in ADAPTER_METHODS.items():
        if not callable(getattr(adapter, method, None)):
            raise AdapterContractError(f"Connection '{name}' adapter must implement {sample}")


def setup_db(connections: Mapping[str, Mapping[str, Any]]) -> dict[str, Any]:
    """Validate every adapter before connecting any of them, then connect in order."""
    adapters: dict[str, Any] = {}
    for name, conf in connections.items():
        adapter = conf.get("adapter")
        if adapter is None:
            continue
        validate_adapter(name, adapter)
        adapters[name] = adapter
    for name, adapter in adapters.items():
        adapter.connect(connections[name])
        logger.info("Successfully established '%s' connection: %s", name, adapter.get_connection_name())
    return adapters


class SqlAlchemyAdapter:
    def __init__(self) -> None:
        self._engine: Engine | None = None
        self._sessionmaker: sessionmaker[Session] | None = None

    def connect(self, config: Mapping[str, Any]) -> Engine:
        db_url = config["url"]
        is_postgres = db_url.startswith("postgres")
        engine_kwargs: dict[str, object] = {
            "future": True,
            "pool_pre_ping": True,
        }
        if is_postgres:
            engine_kwargs.update(
                {
                    "pool_recycle": 1800,
                    "pool_size": 5,
                    "max_overflow": 10,
                    "pool_timeout": 30,
                }
            )
        engine = create_engine(db_url, **engine_kwargs)
        if config.get("debug"):
            @event.listens_for(engine, "checkout")
            def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
                logger.debug("DB connection checkout from pool")
        self._engine = engine
        self._sessionmaker = sessionmaker(
            bind=engine,
            class_=Session,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
        return engine

    def get_connection(self) -> Engine:
        if self._engine is None:
            raise CmsError("SqlAlchemyAdapter is not connected")
        return self._engine

    def get_connection_name(self) -> str:
        return self.get_connection().url.render_as_string(hide_password=True)

    def setup_model(self, model: Any = None) -> Any:
        """Create the tables of a declarative base (or model class) on this connection."""
        metadata = getattr(model, "metadata", None)
        if metadata is not None:
            metadata.create_all(bind=self.get_connection())
        return model

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise CmsError("SqlAlchemyAdapter is not connected")
        return self._sessionmaker()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        s = self.session()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
