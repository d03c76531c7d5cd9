from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    # naive UTC, the way every timestamp column is stored
    return datetime.now(timezone.utc).replace(tzinfo=None)
