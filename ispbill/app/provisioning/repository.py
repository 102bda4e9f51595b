"""Persistence for router connection settings."""
from __future__ import annotations

from typing import List, Optional

from ..db import PostgresRepository
from .models import RouterConfig


def _row_to_router_config(row: dict) -> RouterConfig:
    return RouterConfig(
        config_id=int(row["config_id"]),
        name=row["name"],
        host=row["host"],
        port=row.get("port"),
        username=row["username"],
        password=row["password"],
        use_ssl=bool(row["use_ssl"]),
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresRouterConfigRepository(PostgresRepository):
    """Stores router configurations; at most one row is active at a time."""

    def get_active_router_config(self) -> Optional[RouterConfig]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM router_configs
                WHERE is_active
                ORDER BY updated_at DESC
                LIMIT 1
                """
            )
            row = cursor.fetchone()
            return _row_to_router_config(row) if row else None

    def list_router_configs(self) -> List[RouterConfig]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM router_configs ORDER BY created_at DESC")
            rows = cursor.fetchall() or []
            return [_row_to_router_config(row) for row in rows]

    def save_router_config(self, config: RouterConfig) -> RouterConfig:
        """Insert or update a configuration by name and make it the active one."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE router_configs
                SET is_active = FALSE, updated_at = NOW()
                WHERE is_active AND name <> %s
                """,
                (config.name,),
            )
            cursor.execute(
                """
                INSERT INTO router_configs (name, host, port, username, password, use_ssl, is_active)
                VALUES (%(name)s, %(host)s, %(port)s, %(username)s, %(password)s, %(use_ssl)s, TRUE)
                ON CONFLICT (name) DO UPDATE SET
                    host = EXCLUDED.host,
                    port = EXCLUDED.port,
                    username = EXCLUDED.username,
                    password = EXCLUDED.password,
                    use_ssl = EXCLUDED.use_ssl,
                    is_active = TRUE,
                    updated_at = NOW()
                RETURNING *
                """,
                {
                    "name": config.name,
                    "host": config.host,
                    "port": config.port,
                    "username": config.username,
                    "password": config.password,
                    "use_ssl": config.use_ssl,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist router configuration")
            return _row_to_router_config(row)

    def delete_router_config(self, config_id: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM router_configs WHERE config_id = %s", (config_id,))
            return cursor.rowcount > 0


__all__ = ["PostgresRouterConfigRepository"]
