"""Domain and database models for the notes store."""
