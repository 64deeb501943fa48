# app/db/session.py
from sqlalchemy.orm import declarative_base

# Base compartida por los modelos y por Alembic; las sesiones son async (session_async).
Base = declarative_base()
