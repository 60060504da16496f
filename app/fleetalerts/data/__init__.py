"""SQLAlchemy tables, engine setup and queries for the primary alert store."""
