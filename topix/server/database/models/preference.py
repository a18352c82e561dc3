"""User preference database model (key/value mirror of applied config sections)."""

from sqlalchemy import Column, String, Text

from topix.server.database.session import Base


class UserPreference(Base):
    """Key/value preference row.

    Attributes:
        key: Preference section name (feed, importance, llm)
        value: JSON encoded value
    """

    __tablename__ = "user_preferences"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<UserPreference(key={self.key})>"
