import structlog
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

logger = structlog.get_logger(__name__)

# columns added after the first release; create_all won't touch existing tables
ADDED_COLUMNS = {
    "posts": {
        "title": "VARCHAR(100)",
        "description": "TEXT",
        "videos": "TEXT",
    },
    "social_accounts": {
        "metadata_json": "TEXT",
        "is_connected": "BOOLEAN NOT NULL DEFAULT 1",
    },
    "post_analytics": {
        "saves": "INTEGER NOT NULL DEFAULT 0",
        "reach": "INTEGER NOT NULL DEFAULT 0",
    },
}


def column_exists(bind, table: str, column: str) -> bool:
    cols = [c["name"] for c in inspect(bind).get_columns(table)]
    return column in cols


def migrate(engine: Engine) -> None:
    if engine.dialect.name != "sqlite":
        return
    existing_tables = set(inspect(engine).get_table_names())
    with engine.begin() as conn:
        for table, columns in ADDED_COLUMNS.items():
            if table not in existing_tables:
                continue
            for column, ddl in columns.items():
                if not column_exists(conn, table, column):
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
                    logger.info("column_added", table=table, column=column)
