"""
Compliance Assignment Engine
Shared SQLAlchemy instance.

All model modules import ``db`` from here:
    from assignment_engine.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
