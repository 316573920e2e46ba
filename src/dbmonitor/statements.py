"""SQL issued against monitored targets.

All statements are read-only and run inside a session with a server-side
statement_timeout (see infrastructure.target_connection).
"""
from psycopg2 import sql

PROBE_STAT_STATEMENTS = """
SELECT 1 FROM pg_extension WHERE extname = 'pg_stat_statements'
"""

# Catalog traffic and transaction control are excluded so the top-N window
# is spent on application statements.
TOP_STATEMENTS = r"""
SELECT
    query,
    calls,
    total_exec_time,
    mean_exec_time,
    min_exec_time,
    max_exec_time,
    rows
FROM pg_stat_statements
WHERE dbid = (SELECT oid FROM pg_database WHERE datname = current_database())
  AND query IS NOT NULL
  AND query !~* '(pg_catalog|information_schema|pg_stat)'
  AND query !~* '^\s*(BEGIN|COMMIT|ROLLBACK|SET|SHOW|START|SAVEPOINT|RELEASE|DEALLOCATE|DISCARD|RESET)\b'
ORDER BY total_exec_time DESC
LIMIT %(limit)s
"""

LIST_TABLES = """
SELECT table_name
FROM information_schema.tables
WHERE table_schema = %(schema)s
  AND table_type = 'BASE TABLE'
ORDER BY table_name
"""

TABLE_COLUMNS = """
SELECT
    column_name,
    data_type,
    is_nullable,
    column_default,
    character_maximum_length,
    numeric_precision,
    numeric_scale
FROM information_schema.columns
WHERE table_schema = %(schema)s
  AND table_name = %(table)s
ORDER BY ordinal_position
"""

TABLE_PRIMARY_KEYS = """
SELECT kcu.column_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
 AND tc.table_schema = kcu.table_schema
WHERE tc.constraint_type = 'PRIMARY KEY'
  AND tc.table_schema = %(schema)s
  AND tc.table_name = %(table)s
ORDER BY kcu.ordinal_position
"""

TABLE_FOREIGN_KEYS = """
SELECT
    kcu.column_name,
    ccu.table_name AS foreign_table_name,
    ccu.column_name AS foreign_column_name,
    tc.constraint_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
 AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage ccu
  ON ccu.constraint_name = tc.constraint_name
 AND ccu.table_schema = tc.table_schema
WHERE tc.constraint_type = 'FOREIGN KEY'
  AND tc.table_schema = %(schema)s
  AND tc.table_name = %(table)s
ORDER BY tc.constraint_name, kcu.ordinal_position
"""

TABLE_INDEXES = """
SELECT indexname, indexdef
FROM pg_indexes
WHERE schemaname = %(schema)s
  AND tablename = %(table)s
ORDER BY indexname
"""

# Planner estimate; negative until the table has been analyzed/vacuumed.
TABLE_ROW_ESTIMATE = """
SELECT c.reltuples::bigint AS estimate
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE n.nspname = %(schema)s
  AND c.relname = %(table)s
"""


def exact_row_count(schema: str, table: str) -> sql.Composed:
    return sql.SQL("SELECT COUNT(*) AS count FROM {}.{}").format(sql.Identifier(schema), sql.Identifier(table))
