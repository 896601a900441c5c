"""Seed the tutorial's "bad schema / good schema" tables into a database.

Usage is intentionally minimal:

1. Run this script once (defaults to a local SQLite file); if the tables already
   exist, nothing happens.
2. Run `audit samples/tutorial_schema.json --url <same url>` to audit the
   reflected tables with the tutorial's functional dependencies overlaid.
"""
from __future__ import annotations

import argparse
import os
import sys

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


DEFAULT_URL = os.environ.get("AUDIT_DATABASE_URL", "sqlite:///normalization_examples.db")

TUTORIAL_SQL = """
-- 1NF: several phone numbers packed into one cell
CREATE TABLE bad_contacts (
    contact_id INTEGER PRIMARY KEY,
    name VARCHAR(100) NOT NULL,
    phones VARCHAR(200)
);
INSERT INTO bad_contacts VALUES (1, 'Alice', '555-1234, 555-9876');
INSERT INTO bad_contacts VALUES (2, 'Bob', '555-4567');

CREATE TABLE contacts (
    contact_id INTEGER PRIMARY KEY,
    name VARCHAR(100) NOT NULL
);
CREATE TABLE contact_phones (
    contact_id INTEGER NOT NULL REFERENCES contacts (contact_id),
    phone VARCHAR(20) NOT NULL,
    PRIMARY KEY (contact_id, phone)
);
INSERT INTO contacts VALUES (1, 'Alice');
INSERT INTO contacts VALUES (2, 'Bob');
INSERT INTO contact_phones VALUES (1, '555-1234');
INSERT INTO contact_phones VALUES (1, '555-9876');
INSERT INTO contact_phones VALUES (2, '555-4567');

-- 2NF: product_name depends on product_id alone, customer_name on order_id alone
CREATE TABLE bad_orders (
    order_id INTEGER NOT NULL,
    product_id INTEGER NOT NULL,
    product_name VARCHAR(100),
    customer_name VARCHAR(100),
    quantity INTEGER,
    PRIMARY KEY (order_id, product_id)
);
INSERT INTO bad_orders VALUES (1, 10, 'Keyboard', 'Alice', 1);
INSERT INTO bad_orders VALUES (1, 20, 'Mouse', 'Alice', 2);
INSERT INTO bad_orders VALUES (2, 10, 'Keyboard', 'Bob', 1);

CREATE TABLE products (
    product_id INTEGER PRIMARY KEY,
    product_name VARCHAR(100)
);
CREATE TABLE orders (
    order_id INTEGER PRIMARY KEY,
    customer_name VARCHAR(100)
);
CREATE TABLE order_items (
    order_id INTEGER NOT NULL REFERENCES orders (order_id),
    product_id INTEGER NOT NULL REFERENCES products (product_id),
    quantity INTEGER,
    PRIMARY KEY (order_id, product_id)
);
INSERT INTO products VALUES (10, 'Keyboard');
INSERT INTO products VALUES (20, 'Mouse');
INSERT INTO orders VALUES (1, 'Alice');
INSERT INTO orders VALUES (2, 'Bob');
INSERT INTO order_items VALUES (1, 10, 1);
INSERT INTO order_items VALUES (1, 20, 2);
INSERT INTO order_items VALUES (2, 10, 1);

-- 3NF: city depends on zipcode, which is not a key
CREATE TABLE bad_customers (
    customer_id INTEGER PRIMARY KEY,
    customer_name VARCHAR(100),
    city VARCHAR(100),
    zipcode VARCHAR(10)
);
INSERT INTO bad_customers VALUES (1, 'Alice', 'Springfield', '12345');
INSERT INTO bad_customers VALUES (2, 'Bob', 'Springfield', '12345');
INSERT INTO bad_customers VALUES (3, 'Carol', 'Shelbyville', '67890');

CREATE TABLE cities (
    city_id INTEGER PRIMARY KEY,
    city VARCHAR(100) NOT NULL,
    zipcode VARCHAR(10) NOT NULL,
    UNIQUE (city, zipcode)
);
CREATE TABLE customers (
    customer_id INTEGER PRIMARY KEY,
    customer_name VARCHAR(100),
    city_id INTEGER REFERENCES cities (city_id)
);
INSERT INTO cities VALUES (1, 'Springfield', '12345');
INSERT INTO cities VALUES (2, 'Shelbyville', '67890');
INSERT INTO customers VALUES (1, 'Alice', 1);
INSERT INTO customers VALUES (2, 'Bob', 1);
INSERT INTO customers VALUES (3, 'Carol', 2);
"""

SENTINEL_TABLE = "bad_orders"


def build_engine(url: str) -> Engine:
    return create_engine(url)


def tables_exist(engine: Engine) -> bool:
    return inspect(engine).has_table(SENTINEL_TABLE)


def split_statements(sql_text: str):
    statement = []
    for line in sql_text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        statement.append(line)
        if stripped.endswith(";"):
            yield "\n".join(statement).rstrip().rstrip(";")
            statement = []
    if statement:
        yield "\n".join(statement)


def seed(engine: Engine) -> bool:
    """Create and fill the example tables. Returns False when they were already there."""
    if tables_exist(engine):
        print("Example tables already present; nothing to do.")
        return False

    print("Seeding normalization examples...")
    with engine.begin() as conn:
        for i, statement in enumerate(split_statements(TUTORIAL_SQL), start=1):
            print(f"Executing statement {i}...", flush=True)
            conn.exec_driver_sql(statement)
    print("Seeding complete.")
    return True


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the bad/good normalization example tables.")
    parser.add_argument("--url", default=DEFAULT_URL, help="SQLAlchemy URL (default: env AUDIT_DATABASE_URL or %(default)s)")

    args = parser.parse_args()
    engine = build_engine(args.url)
    try:
        seed(engine)
    except SQLAlchemyError as exc:
        print("[ERROR] Could not seed the database. Check the URL and that the driver is installed.")
        print(f"Details: {exc}")
        sys.exit(1)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
