# inspection_api/external_source.py
#
# Connection to the plant interface database (MSSQL in production) that the
# inf_* entities import from. Any SQLAlchemy URL works; the driver is chosen
# by the URL, e.g. mssql+pymssql://user:pw@host/db.
from __future__ import annotations
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from sqlalchemy.engine import Engine

from inspection_api.db import Settings, build_engine, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceConnection:
    engine: Engine
    schema: Optional[str] = None
    batch_limit: int = 500


@lru_cache
def _source_engine(url: str) -> Engine:
    logger.info("Creating external source engine for %s", url.split("@")[-1])
    return build_engine(url)


def get_source(settings: Settings = Depends(get_settings)) -> Optional[SourceConnection]:
    """None when no external source is configured."""
    if not settings.SOURCE_DATABASE_URL:
        return None
    return SourceConnection(
        engine=_source_engine(settings.SOURCE_DATABASE_URL),
        schema=settings.SOURCE_SCHEMA,
        batch_limit=settings.SOURCE_BATCH_LIMIT,
    )
