"""SQLAlchemy ORM models backing the persistent watchlist."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .models import ProviderKind


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    # Stored naive, in UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MovieRecord(Base):
    """A locally owned watchlist entry."""

    __tablename__ = "movies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255))
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    plot: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    runtime: Mapped[int] = mapped_column(Integer, default=0)
    watch_position: Mapped[int] = mapped_column(Integer, default=0)
    seen: Mapped[bool] = mapped_column(Boolean, default=False)
    vote_average: Mapped[float | None] = mapped_column(Float, nullable=True)
    vote_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_fetching: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    providers: Mapped[list["ProviderRecord"]] = relationship(
        back_populates="movie",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @classmethod
    def create(cls, title: str, *, is_fetching: bool = True) -> "MovieRecord":
        """Return a fresh record with every optional field unset."""

        return cls(
            id=_new_id(),
            title=title,
            year=None,
            plot=None,
            poster_url=None,
            runtime=0,
            watch_position=0,
            seen=False,
            vote_average=None,
            vote_count=None,
            is_fetching=is_fetching,
            created_at=_utcnow(),
            providers=[],
        )

    @property
    def display_title(self) -> str:
        if self.year is not None:
            return f"{self.title} ({self.year})"
        return self.title

    @property
    def rating_label(self) -> str | None:
        if self.vote_average is None:
            return None
        return f"{self.vote_average:.1f}"

    def set_watch_position(self, minutes: int) -> int:
        """Store a watch position clamped to the known runtime."""

        position = max(0, int(minutes))
        if self.runtime and self.runtime > 0:
            position = min(position, self.runtime)
        self.watch_position = position
        return position

    def apply_runtime(self, minutes: int) -> None:
        """Record a new runtime, pulling the watch position back inside it."""

        self.runtime = max(0, int(minutes))
        if self.runtime > 0 and self.watch_position > self.runtime:
            self.watch_position = self.runtime

    def replace_providers(self, providers: list["ProviderRecord"]) -> None:
        """Swap the owned provider set in one assignment."""

        self.providers = list(providers)


class ProviderRecord(Base):
    """Streaming availability entry owned by a single movie."""

    __tablename__ = "providers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    movie_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("movies.id", ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(255))
    logo_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    kind: Mapped[ProviderKind] = mapped_column(
        Enum(
            ProviderKind,
            native_enum=False,
            length=16,
            values_callable=lambda kinds: [kind.value for kind in kinds],
        )
    )

    movie: Mapped[MovieRecord] = relationship(back_populates="providers")

    @classmethod
    def create(
        cls, name: str, kind: ProviderKind, logo_url: str | None = None
    ) -> "ProviderRecord":
        return cls(id=_new_id(), name=name, kind=kind, logo_url=logo_url)
