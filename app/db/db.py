import argparse

from .models import Base
from .session import engine

from app.utils.logging import get_logger

logger = get_logger()


def create_tables():
    Base.metadata.create_all(engine)
    logger.info(f"Ensured tables: {', '.join(Base.metadata.tables)}")


def drop_tables():
    Base.metadata.drop_all(engine)
    logger.info(f"Dropped tables: {', '.join(Base.metadata.tables)}")


def reset_db():
    logger.info(f"Resetting database at {engine.url.render_as_string(hide_password=True)}")
    drop_tables()
    create_tables()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Manage the persons schema")
    parser.add_argument(
        "--reset", action="store_true", help="Drop and recreate all tables"
    )
    args = parser.parse_args()

    if args.reset:
        reset_db()
    else:
        create_tables()
