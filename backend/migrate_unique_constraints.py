import sqlite3
import os

db_path = "outreach.db"


def migrate_constraints():
    target_db_path = db_path
    if not os.path.exists(target_db_path):
        # running from the repo root
        if os.path.exists(os.path.join("backend", db_path)):
            target_db_path = os.path.join("backend", db_path)
        else:
            print(f"Database {target_db_path} not found.")
            return

    conn = sqlite3.connect(target_db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("ALTER TABLE campaign ADD COLUMN status_before_generation TEXT")
        print("Added column status_before_generation to campaign table")
    except sqlite3.OperationalError as e:
        if "duplicate column name" in str(e):
            print("Column status_before_generation already exists")
        else:
            print(f"Error adding status_before_generation: {e}")

    cursor.execute("UPDATE contact SET email = lower(trim(email)) WHERE email IS NOT NULL")
    cursor.execute("UPDATE contact SET email = NULL WHERE email = ''")

    duplicates = cursor.execute(
        "SELECT email, COUNT(*) FROM contact WHERE email IS NOT NULL GROUP BY email HAVING COUNT(*) > 1"
    ).fetchall()
    if duplicates:
        for email, count in duplicates:
            print(f"Duplicate contact email {email} ({count} rows), merge these before re-running")
        conn.rollback()
        conn.close()
        return

    pairs = cursor.execute(
        "SELECT campaign_id, contact_id, COUNT(*) FROM campaign_recipient "
        "GROUP BY campaign_id, contact_id HAVING COUNT(*) > 1"
    ).fetchall()
    for campaign_id, contact_id, count in pairs:
        # keep the row that got furthest, then the oldest
        cursor.execute(
            "DELETE FROM campaign_recipient WHERE campaign_id = ? AND contact_id = ? AND id NOT IN ("
            "  SELECT id FROM campaign_recipient WHERE campaign_id = ? AND contact_id = ?"
            "  ORDER BY sent_at IS NULL, id LIMIT 1"
            ")",
            (campaign_id, contact_id, campaign_id, contact_id),
        )
        print(f"Removed {count - 1} duplicate recipient(s) for campaign {campaign_id} contact {contact_id}")

    indexes = [
        ("ix_contact_email_unique", "contact", "email"),
        ("uq_campaign_recipient_contact", "campaign_recipient", "campaign_id, contact_id"),
    ]
    for name, table, columns in indexes:
        cursor.execute(f"CREATE UNIQUE INDEX IF NOT EXISTS {name} ON {table} ({columns})")
        print(f"Unique index {name} on {table}({columns}) ready")

    conn.commit()
    conn.close()
    print("Migration complete!")


if __name__ == "__main__":
    migrate_constraints()
