"""SQLite persistence for tasks, vocabulary versions and artefacts."""
