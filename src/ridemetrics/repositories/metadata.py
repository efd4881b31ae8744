"""Id lookups against the operational databases.

used by the dashboard to turn human names (city, merchant) into uuids for
deep links. a lookup that fails is logged and treated as a miss - the
caller decides whether that is a 404.
"""

import structlog

from ridemetrics.compiler.filters import placeholder
from ridemetrics.compiler.sql_builder import CompiledQuery
from ridemetrics.errors import QueryExecutionError
from ridemetrics.executor.clickhouse_executor import ClickHouseExecutor
from ridemetrics.models.results import MerchantCity

logger = structlog.get_logger(__name__)

# driver side is the bpp, customer side the bap
_DATABASES = {"driver": "atlas_driver_offer_bpp", "customer": "atlas_app"}


def database_for(kind: str) -> str:
    """Database for a lookup kind; anything unknown is treated as driver."""
    return _DATABASES.get(kind, _DATABASES["driver"])


class MetadataRepository:
    def __init__(self, executor: ClickHouseExecutor) -> None:
        self.executor = executor

    def city_uuid_query(self, city: str, merchant_short_id: str, kind: str = "driver") -> CompiledQuery:
        sql = (
            f"SELECT id\nFROM {database_for(kind)}.merchant_operating_city\n"
            f"WHERE city = {placeholder('city')} AND merchant_short_id = {placeholder('merchant_short_id')}\n"
            "LIMIT 1"
        )
        return CompiledQuery(sql, {"city": city, "merchant_short_id": merchant_short_id})

    def merchant_cities_query(self, merchant_short_id: str, kind: str = "driver") -> CompiledQuery:
        sql = (
            f"SELECT city, id\nFROM {database_for(kind)}.merchant_operating_city\n"
            f"WHERE merchant_short_id = {placeholder('merchant_short_id')} AND sign = 0"
        )
        return CompiledQuery(sql, {"merchant_short_id": merchant_short_id})

    def merchant_uuid_query(self, merchant_name: str, kind: str = "driver") -> CompiledQuery:
        sql = (
            f"SELECT id\nFROM {database_for(kind)}.merchant\n"
            f"WHERE name = {placeholder('merchant_name')}\n"
            "LIMIT 1"
        )
        return CompiledQuery(sql, {"merchant_name": merchant_name})

    def _first_id(self, query: CompiledQuery, **context: str) -> str | None:
        try:
            row = self.executor.execute(query.sql, query.params).first()
        except QueryExecutionError as exc:
            logger.error("metadata_lookup_failed", error=str(exc), **context)
            return None
        value = row.get("id")
        return str(value) if value else None

    def city_uuid(self, city: str, merchant_short_id: str, kind: str = "driver") -> str | None:
        query = self.city_uuid_query(city, merchant_short_id, kind)
        return self._first_id(query, city=city, merchant_short_id=merchant_short_id)

    def merchant_uuid(self, merchant_name: str, kind: str = "driver") -> str | None:
        query = self.merchant_uuid_query(merchant_name, kind)
        return self._first_id(query, merchant_name=merchant_name)

    def merchant_cities(self, merchant_short_id: str, kind: str = "driver") -> list[MerchantCity]:
        query = self.merchant_cities_query(merchant_short_id, kind)
        try:
            rows = self.executor.execute(query.sql, query.params).data
        except QueryExecutionError as exc:
            logger.error("metadata_lookup_failed", error=str(exc), merchant_short_id=merchant_short_id)
            return []
        return [MerchantCity.model_validate(row) for row in rows]
