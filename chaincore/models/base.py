"""Declarative base shared by every chain-core model."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
