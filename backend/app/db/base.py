"""Declarative base shared by all models (alembic reads Base.metadata)."""
from sqlalchemy.orm import declarative_base

Base = declarative_base()
