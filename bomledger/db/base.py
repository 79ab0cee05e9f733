import shortuuid
from sqlalchemy.orm import DeclarativeBase


def generate_id() -> str:
    """Primary key for every ledger table: 22 URL-safe characters."""
    return shortuuid.uuid()


class Base(DeclarativeBase):
    pass
