import os
import sqlite3
from typing import List, Optional

from ankabot.core.config import settings

DATABASE_PATH = settings.PROFILE_DB_PATH


def init_db():
    """Initialize SQLite database with the profiles table"""
    directory = os.path.dirname(DATABASE_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with sqlite3.connect(DATABASE_PATH) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS profiles (
                name TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()


def get(name: str) -> Optional[str]:
    """Get the stored profile payload for name"""
    with sqlite3.connect(DATABASE_PATH) as conn:
        cursor = conn.execute("SELECT payload FROM profiles WHERE name = ?", (name,))
        result = cursor.fetchone()
        return result[0] if result else None


def set(name: str, payload: str):
    """Store profile payload; the last writer wins"""
    with sqlite3.connect(DATABASE_PATH) as conn:
        conn.execute(
            "INSERT OR REPLACE INTO profiles (name, payload, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)",
            (name, payload),
        )
        conn.commit()


def delete(name: str) -> bool:
    """Remove a profile explicitly. Nothing else ever deletes one."""
    with sqlite3.connect(DATABASE_PATH) as conn:
        cursor = conn.execute("DELETE FROM profiles WHERE name = ?", (name,))
        conn.commit()
        return cursor.rowcount > 0


def list_names() -> List[str]:
    with sqlite3.connect(DATABASE_PATH) as conn:
        cursor = conn.execute("SELECT name FROM profiles ORDER BY name")
        return [row[0] for row in cursor.fetchall()]


def clear_all():
    """Clear all profiles (for testing)"""
    with sqlite3.connect(DATABASE_PATH) as conn:
        conn.execute("DELETE FROM profiles")
        conn.commit()
