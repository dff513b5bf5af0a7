"""
FPO Lifecycle Service
SQLAlchemy extension instance shared by every model and service.

Usage:
    from fpo_service.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
