"""Database models, engine and session wiring."""
