"""SQLite persistence plumbing shared by task and knowledge repositories."""
