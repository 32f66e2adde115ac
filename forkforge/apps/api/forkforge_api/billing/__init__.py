"""Payment webhook verification and event ingestion."""
