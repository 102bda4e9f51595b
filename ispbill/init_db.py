"""Create the billing tables in the configured PostgreSQL database."""
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from .app.config import load_db_config

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


def main():
    load_dotenv()
    db_cfg = load_db_config()
    schema = SCHEMA_PATH.read_text(encoding="utf-8")

    with psycopg2.connect(**db_cfg) as conn, conn.cursor() as cur:
        cur.execute(schema)
        conn.commit()
    print(f"Done. Schema applied to {db_cfg['dbname']} on {db_cfg['host']}:{db_cfg['port']}.")


if __name__ == "__main__":
    main()
