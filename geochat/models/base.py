from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Declarative base for every GeoChat table.

    Tables are registered on `Base.metadata` when their module is imported
    (main.py imports every model module).
    """

    pass
