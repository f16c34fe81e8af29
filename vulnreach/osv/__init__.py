"""OSV vulnerability entries and database access."""
