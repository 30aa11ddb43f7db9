"""Kind-specific subtask providers: harvest, transform, import, subject resolution, cleanup."""
