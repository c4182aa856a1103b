"""
Database service for configuration, article and delivery state.

This module provides the PostgresStore class which interfaces with PostgreSQL
through a shared connection pool. The pool is safe to use from the scheduler's
worker threads; every method borrows a connection for one short transaction.
"""

import dataclasses
import logging
from typing import Any, Dict, List, Optional, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from dossier.errors import ConfigValidationError, StoreError
from dossier.models import Article, Delivery, DossierConfig, Tone
from dossier.services.tones import DEFAULT_TONES

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS dossier_configs (
        id SERIAL PRIMARY KEY,
        title VARCHAR(255) NOT NULL,
        email VARCHAR(255) NOT NULL,
        feed_urls TEXT[] NOT NULL,
        article_count INTEGER DEFAULT 20 CHECK (article_count >= 1 AND article_count <= 50),
        frequency VARCHAR(50) NOT NULL CHECK (frequency IN ('daily', 'weekly', 'monthly')),
        delivery_time TIME NOT NULL,
        timezone VARCHAR(50) DEFAULT 'UTC',
        tone VARCHAR(100) DEFAULT 'professional',
        language VARCHAR(50) DEFAULT 'English',
        special_instructions TEXT DEFAULT '',
        active BOOLEAN DEFAULT true,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS articles (
        id SERIAL PRIMARY KEY,
        feed_url TEXT NOT NULL,
        title TEXT NOT NULL,
        link TEXT NOT NULL UNIQUE,
        description TEXT,
        content TEXT,
        author VARCHAR(255),
        published_at TIMESTAMPTZ NOT NULL,
        fetched_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dossier_deliveries (
        id SERIAL PRIMARY KEY,
        config_id INTEGER REFERENCES dossier_configs(id) ON DELETE CASCADE,
        delivery_date TIMESTAMPTZ NOT NULL,
        summary TEXT NOT NULL,
        article_count INTEGER NOT NULL,
        email_sent BOOLEAN DEFAULT false,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS delivery_articles (
        delivery_id INTEGER REFERENCES dossier_deliveries(id) ON DELETE CASCADE,
        article_id INTEGER REFERENCES articles(id) ON DELETE CASCADE,
        PRIMARY KEY (delivery_id, article_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tones (
        id SERIAL PRIMARY KEY,
        name VARCHAR(100) NOT NULL UNIQUE,
        prompt TEXT NOT NULL,
        is_system_default BOOLEAN DEFAULT false,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_articles_published_at ON articles(published_at)",
    "CREATE INDEX IF NOT EXISTS idx_dossier_configs_active ON dossier_configs(active)",
    "CREATE INDEX IF NOT EXISTS idx_dossier_deliveries_config_id "
    "ON dossier_deliveries(config_id, delivery_date DESC)",
)

_CONFIG_COLUMNS = (
    "id, title, email, feed_urls, article_count, frequency, delivery_time, "
    "timezone, tone, language, special_instructions, active, created_at, updated_at"
)
_DELIVERY_COLUMNS = "id, config_id, delivery_date, summary, article_count, email_sent"


def _delivery_from_row(row: Dict[str, Any], article_ids: Sequence[int] = ()) -> Delivery:
    return Delivery(
        id=row["id"],
        config_id=row["config_id"],
        delivered_at=row["delivery_date"],
        summary=row["summary"],
        article_count=row["article_count"],
        success=row["email_sent"],
        article_ids=tuple(article_ids),
    )


def _tone_from_row(row: Dict[str, Any]) -> Tone:
    return Tone(
        id=row["id"],
        name=row["name"],
        prompt=row["prompt"],
        is_system_default=row["is_system_default"],
    )


class PostgresStore:
    """Handles persistence using PostgreSQL."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 5):
        self.pool = ConnectionPool(
            dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row},
            open=True,
        )
        logger.info("Connected to PostgreSQL (pool %d-%d).", min_size, max_size)

    def close(self) -> None:
        self.pool.close()

    def _fetch_all(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        try:
            with self.pool.connection() as conn:
                return conn.execute(query, params).fetchall()
        except psycopg.Error as e:
            raise StoreError(f"Query failed: {e}") from e

    def _fetch_one(self, query: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        try:
            with self.pool.connection() as conn:
                return conn.execute(query, params).fetchone()
        except psycopg.Error as e:
            raise StoreError(f"Query failed: {e}") from e

    def migrate(self) -> None:
        """Creates the schema if needed and seeds the system tones."""
        try:
            with self.pool.connection() as conn:
                for statement in SCHEMA_STATEMENTS:
                    conn.execute(statement)
                with conn.cursor() as cur:
                    cur.executemany(
                        "INSERT INTO tones (name, prompt, is_system_default) "
                        "VALUES (%s, %s, true) ON CONFLICT (name) DO NOTHING",
                        list(DEFAULT_TONES),
                    )
        except psycopg.Error as e:
            raise StoreError(f"Migration failed: {e}") from e
        logger.info("Database schema is up to date.")

    # Configurations

    def list_active_configs(self) -> List[DossierConfig]:
        """Returns every active configuration that passes validation."""
        rows = self._fetch_all(
            f"SELECT {_CONFIG_COLUMNS} FROM dossier_configs WHERE active = true ORDER BY id"
        )
        configs = []
        for row in rows:
            try:
                configs.append(DossierConfig.from_mapping(row))
            except ConfigValidationError as e:
                logger.error("Skipping invalid dossier config %s: %s", row.get("id"), e)
        return configs

    def get_config(self, config_id: int) -> Optional[DossierConfig]:
        row = self._fetch_one(
            f"SELECT {_CONFIG_COLUMNS} FROM dossier_configs WHERE id = %s", (config_id,)
        )
        if row is None:
            return None
        return DossierConfig.from_mapping(row)

    # Articles

    def save_articles(self, articles: Sequence[Article]) -> List[Article]:
        """Stores articles once per link and returns them with their ids."""
        if not articles:
            return []
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.executemany(
                        "INSERT INTO articles (feed_url, title, link, description, "
                        "content, author, published_at, fetched_at) "
                        "VALUES (%s, %s, %s, %s, %s, %s, %s, %s) "
                        "ON CONFLICT (link) DO NOTHING",
                        [
                            (
                                a.feed_url,
                                a.title,
                                a.link,
                                a.description,
                                a.content,
                                a.author,
                                a.published_at,
                                a.fetched_at,
                            )
                            for a in articles
                        ],
                    )
                rows = conn.execute(
                    "SELECT id, link FROM articles WHERE link = ANY(%s)",
                    ([a.link for a in articles],),
                ).fetchall()
        except psycopg.Error as e:
            raise StoreError(f"Saving articles failed: {e}") from e

        ids = {row["link"]: row["id"] for row in rows}
        logger.info("Stored %d articles (%d links known).", len(articles), len(ids))
        return [dataclasses.replace(a, id=ids.get(a.link)) for a in articles]

    # Deliveries

    def last_delivery(self, config_id: int) -> Optional[Delivery]:
        row = self._fetch_one(
            f"SELECT {_DELIVERY_COLUMNS} FROM dossier_deliveries WHERE config_id = %s "
            "ORDER BY delivery_date DESC LIMIT 1",
            (config_id,),
        )
        return _delivery_from_row(row) if row else None

    def list_deliveries(self, config_id: int, limit: int = 20) -> List[Delivery]:
        rows = self._fetch_all(
            f"SELECT {_DELIVERY_COLUMNS} FROM dossier_deliveries WHERE config_id = %s "
            "ORDER BY delivery_date DESC LIMIT %s",
            (config_id, limit),
        )
        return [_delivery_from_row(row) for row in rows]

    def record_delivery(self, delivery: Delivery) -> Delivery:
        """Writes a delivery record once. Returns it with its id."""
        article_ids = [i for i in delivery.article_ids if i is not None]
        try:
            with self.pool.connection() as conn:
                row = conn.execute(
                    "INSERT INTO dossier_deliveries "
                    "(config_id, delivery_date, summary, article_count, email_sent) "
                    "VALUES (%s, %s, %s, %s, %s) RETURNING id",
                    (
                        delivery.config_id,
                        delivery.delivered_at,
                        delivery.summary,
                        delivery.article_count,
                        delivery.success,
                    ),
                ).fetchone()
                if article_ids:
                    with conn.cursor() as cur:
                        cur.executemany(
                            "INSERT INTO delivery_articles (delivery_id, article_id) "
                            "VALUES (%s, %s) ON CONFLICT DO NOTHING",
                            [(row["id"], article_id) for article_id in article_ids],
                        )
        except psycopg.Error as e:
            raise StoreError(f"Recording delivery failed: {e}") from e
        return dataclasses.replace(delivery, id=row["id"], article_ids=tuple(article_ids))

    # Tones

    def get_tone(self, name: str) -> Optional[Tone]:
        row = self._fetch_one(
            "SELECT id, name, prompt, is_system_default FROM tones WHERE name = %s",
            (name,),
        )
        return _tone_from_row(row) if row else None

    def list_tones(self) -> List[Tone]:
        rows = self._fetch_all(
            "SELECT id, name, prompt, is_system_default FROM tones "
            "ORDER BY is_system_default DESC, name"
        )
        return [_tone_from_row(row) for row in rows]

    def insert_tone(self, tone: Tone) -> Tone:
        row = self._fetch_one(
            "INSERT INTO tones (name, prompt, is_system_default) VALUES (%s, %s, false) "
            "RETURNING id, name, prompt, is_system_default",
            (tone.name, tone.prompt),
        )
        return _tone_from_row(row)

    def update_tone_prompt(self, name: str, prompt: str) -> Tone:
        row = self._fetch_one(
            "UPDATE tones SET prompt = %s, updated_at = NOW() "
            "WHERE name = %s AND is_system_default = false "
            "RETURNING id, name, prompt, is_system_default",
            (prompt, name),
        )
        if row is None:
            raise StoreError(f"Tone '{name}' could not be updated")
        return _tone_from_row(row)

    def delete_tone(self, name: str) -> None:
        try:
            with self.pool.connection() as conn:
                conn.execute(
                    "DELETE FROM tones WHERE name = %s AND is_system_default = false",
                    (name,),
                )
        except psycopg.Error as e:
            raise StoreError(f"Deleting tone failed: {e}") from e
