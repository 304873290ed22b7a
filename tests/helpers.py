"""Test helpers shared across modules."""


def add_trigger(database, sql: str) -> None:
    """Install a trigger used to force a store failure."""
    with database.connect() as conn:
        conn.execute(sql)


def ledger_rows(database, account_id: int) -> list:
    """Raw ledger rows of an account, oldest first."""
    with database.connect() as conn:
        return conn.execute(
            "SELECT * FROM ledger_entries WHERE account_id = ? ORDER BY id", (account_id,)
        ).fetchall()
