from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Declarative base shared by every model.

    Model modules (user, connection, location, waypoint) must be imported
    before metadata is used so their tables are registered.
    """

    pass
