import json
import sqlite3


class Database:
    def __init__(self, db_name="portal.db"):
        """
        Initialize the SQLite key-value store.
        Only open client sessions are persisted; events, members and posts live in memory.
        """
        self.conn = sqlite3.connect(db_name, check_same_thread=False)
        self.create_tables()

    def create_tables(self):
        """Create the key-value table."""
        cursor = self.conn.cursor()
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        ''')
        self.conn.commit()

    def set_item(self, key, value):
        """Store a JSON serializable value under a key, replacing any previous one."""
        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT OR REPLACE INTO kv_store (key, value)
            VALUES (?, ?)
        ''', (key, json.dumps(value)))
        self.conn.commit()

    def get_item(self, key):
        """Retrieve the value stored under a key, or None."""
        cursor = self.conn.cursor()
        cursor.execute('SELECT value FROM kv_store WHERE key = ?', (key,))
        row = cursor.fetchone()
        if row:
            return json.loads(row[0])
        return None

    def remove_item(self, key):
        """Remove a key. Returns True if something was deleted."""
        cursor = self.conn.cursor()
        cursor.execute('DELETE FROM kv_store WHERE key = ?', (key,))
        self.conn.commit()
        return cursor.rowcount > 0

    def close(self):
        """Close the database connection."""
        self.conn.close()
