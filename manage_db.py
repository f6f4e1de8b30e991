#!/usr/bin/env python3
"""
Database management script for deployment.
Run this during the build/deployment pipeline to create missing tables.
"""
import os
import sys

# Add current directory to path so we can import clubhouse
sys.path.append(os.getcwd())

from sqlalchemy.exc import SQLAlchemyError

from clubhouse.app import create_app
from clubhouse.models import db


def deploy():
    """Run deployment tasks."""
    print("Creating database tables...")
    app = create_app(create_tables=False)
    with app.app_context():
        try:
            db.create_all()
            print("Database tables are up to date.")
        except SQLAlchemyError as e:
            print(f"Error creating tables: {e}")
            sys.exit(1)


if __name__ == '__main__':
    deploy()
