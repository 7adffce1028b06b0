from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Declarative base for the commerce core; tables default to the lowercased class name."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # noqa: N805
        return cls.__name__.lower()


# Import models so Alembic and ``create_all`` see every table.
import roastery_api.models  # noqa: E402,F401
