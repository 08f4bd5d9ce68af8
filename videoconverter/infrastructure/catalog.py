"""Catalog access over the Bitrix iblock schema.

Video records live in three tables:

- ``b_iblock``: the information block holding lessons (matched by CODE and
  IBLOCK_TYPE_ID).
- ``b_iblock_property``: one row per property definition of the block; the
  original link and each derivative link have their own CODE.
- ``b_iblock_element_property``: property values of every element (video).

All statements are plain SQL through SQLAlchemy ``text()``; the engine is
shared by every worker thread.
"""

import logging
import threading
from typing import List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from videoconverter.config.models import DatabaseConfig
from videoconverter.domain.errors import CatalogError
from videoconverter.domain.models import Quality, QualityPropertyMap, Slot, VideoRecord

logger = logging.getLogger(__name__)

_COLUMNS = {
    Quality.Q1080: "1080",
    Quality.Q720: "720",
    Quality.Q480: "480",
    Quality.Q360: "360",
    Quality.PREVIEW: "preview",
}


def open_engine(url: str, pool_size: int = 10) -> Engine:
    """Creates the catalog engine and checks that the database answers."""
    kwargs = {"pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = pool_size
    try:
        engine = create_engine(url, **kwargs)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise CatalogError(f"Database connection failed: {e}") from e
    return engine


class CatalogSource:
    def __init__(self, engine: Engine, config: DatabaseConfig):
        self.engine = engine
        self.config = config
        self._quality_ids: Optional[QualityPropertyMap] = None
        self._quality_lock = threading.Lock()
        self._insert_lock = threading.Lock()

    def _params(self) -> dict:
        params = {
            "iblock_code": self.config.iblock_code,
            "iblock_type": self.config.iblock_type,
            "code_original": self.config.original_property_code,
        }
        for quality, column in _COLUMNS.items():
            params[f"code_{column}"] = self.config.property_codes[quality]
        return params

    def _property_joins(self) -> str:
        return "\n".join(
            f"  JOIN b_iblock_property bip{column}\n"
            f"    ON bip{column}.IBLOCK_ID = b_iblock.ID AND bip{column}.CODE = :code_{column}"
            for column in _COLUMNS.values()
        )

    def _videos_sql(self) -> str:
        selects = ",\n".join(
            f"  p{column}.ID AS id_{column},\n  p{column}.VALUE AS link_{column}"
            for column in _COLUMNS.values()
        )
        value_joins = "\n".join(
            f"  LEFT JOIN b_iblock_element_property p{column}\n"
            f"    ON p{column}.IBLOCK_PROPERTY_ID = bip{column}.ID"
            f" AND p{column}.IBLOCK_ELEMENT_ID = p.IBLOCK_ELEMENT_ID"
            for column in _COLUMNS.values()
        )
        return f"""
SELECT
  p.IBLOCK_ELEMENT_ID AS id,
  p.ID AS id_original,
  p.VALUE AS link_original,
{selects}
FROM b_iblock
  JOIN b_iblock_property bip
    ON bip.IBLOCK_ID = b_iblock.ID AND bip.CODE = :code_original
{self._property_joins()}
  JOIN b_iblock_element_property p
    ON p.IBLOCK_PROPERTY_ID = bip.ID
{value_joins}
WHERE b_iblock.CODE = :iblock_code AND b_iblock.IBLOCK_TYPE_ID = :iblock_type
ORDER BY p.IBLOCK_ELEMENT_ID
"""

    def _row_to_video(self, row) -> VideoRecord:
        slots = {
            quality: Slot(property_id=row[f"id_{column}"], url=row[f"link_{column}"])
            for quality, column in _COLUMNS.items()
        }
        return VideoRecord(
            id=row["id"],
            original=Slot(property_id=row["id_original"], url=row["link_original"]),
            slots=slots,
        )

    def list_videos(self) -> List[VideoRecord]:
        """Returns every lesson video with its original and derivative slots."""
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(text(self._videos_sql()), self._params()).mappings().all()
        except SQLAlchemyError as e:
            raise CatalogError(f"Cannot list videos: {e}") from e
        return [self._row_to_video(row) for row in rows]

    def update_property(self, property_id: int, value: str):
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    text("UPDATE b_iblock_element_property SET VALUE = :value WHERE ID = :id"),
                    {"value": value, "id": property_id},
                )
        except SQLAlchemyError as e:
            raise CatalogError(f"Cannot update property {property_id}: {e}") from e

    def insert_property(self, element_id: int, property_id: int, value: str):
        # IDs are allocated as MAX(ID)+1, so concurrent inserts must not interleave
        with self._insert_lock:
            try:
                with self.engine.begin() as conn:
                    max_id = conn.execute(text("SELECT MAX(ID) FROM b_iblock_element_property")).scalar()
                    conn.execute(
                        text(
                            "INSERT INTO b_iblock_element_property "
                            "(ID, IBLOCK_PROPERTY_ID, IBLOCK_ELEMENT_ID, VALUE) "
                            "VALUES (:id, :property_id, :element_id, :value)"
                        ),
                        {
                            "id": (max_id or 0) + 1,
                            "property_id": property_id,
                            "element_id": element_id,
                            "value": value,
                        },
                    )
            except SQLAlchemyError as e:
                raise CatalogError(
                    f"Cannot insert property {property_id} for element {element_id}: {e}"
                ) from e

    def _fetch_quality_ids(self) -> QualityPropertyMap:
        selects = ",\n".join(f"  bip{column}.ID AS id_{column}" for column in _COLUMNS.values())
        sql = f"""
SELECT
{selects}
FROM b_iblock
{self._property_joins()}
WHERE b_iblock.CODE = :iblock_code AND b_iblock.IBLOCK_TYPE_ID = :iblock_type
"""
        params = {k: v for k, v in self._params().items() if k != "code_original"}
        try:
            with self.engine.connect() as conn:
                row = conn.execute(text(sql), params).mappings().first()
        except SQLAlchemyError as e:
            raise CatalogError(f"Cannot read quality property IDs: {e}") from e
        if row is None:
            raise CatalogError(
                f"Quality properties are not defined for iblock {self.config.iblock_code!r}"
            )
        return QualityPropertyMap(**dict(row))

    def quality_property_map(self) -> QualityPropertyMap:
        """Returns the property ID of every derivative kind, cached after the first call."""
        if self._quality_ids is not None:
            return self._quality_ids
        with self._quality_lock:
            if self._quality_ids is None:
                self._quality_ids = self._fetch_quality_ids()
                logger.info(f"Quality property IDs: {self._quality_ids.model_dump()}")
        return self._quality_ids
