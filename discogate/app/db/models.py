from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, String
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Declarative base with async attribute loading."""


class Profile(Base):
    """A user of the gateway and their linked Discogs account, if any.

    The four ``discogs_*`` credential columns are written together and
    cleared together; a row never holds a token without its secret.
    """

    __tablename__ = "profiles"
    __table_args__ = (
        Index("idx_profiles_api_key_hash", "api_key_hash"),
        Index("idx_profiles_discogs_username", "discogs_username"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str] = mapped_column(String, unique=True)
    api_key_hash: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    discogs_oauth_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    discogs_oauth_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    discogs_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    discogs_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    discogs_connected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def has_discogs_tokens(self) -> bool:
        return bool(self.discogs_oauth_token and self.discogs_oauth_secret)

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, discogs_username={self.discogs_username})>"
