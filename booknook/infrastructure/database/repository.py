"""Repository implementations.

Every operation opens its own session from the shared session maker, so a
repository instance is safe to use from concurrently running tasks.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booknook.domain.entities import (
    READING_ACTIONS,
    ActivityAction,
    Book,
    ContentFeatures,
    FileReference,
    LastReadEntry,
    RatingEntry,
    RecentlyReadEntry,
    RecommendationEvent,
    UserActivityEvent,
    UserProfile,
)
from booknook.domain.repositories import (
    IActivityRepository,
    IBookRepository,
    IRecommendationEventRepository,
    IUserProfileRepository,
)
from booknook.infrastructure.database.models import (
    BookModel,
    RecommendationEventModel,
    UserActivityModel,
    UserProfileModel,
)

COUNTER_COLUMNS = {
    "read_count": BookModel.read_count,
    "view_count": BookModel.view_count,
    "completion_count": BookModel.completion_count,
}

# Tag overlap is evaluated in Python; this bounds how many rows are scanned.
TAG_SCAN_LIMIT = 500


def _parse_ts(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else datetime.utcnow()


def _insert_profile_if_missing(session: AsyncSession, user_id: str):
    insert = postgresql.insert if session.bind.dialect.name == "postgresql" else sqlite.insert
    now = datetime.utcnow()
    return (
        insert(UserProfileModel)
        .values(user_id=user_id, recently_read=[], last_read={}, created_at=now, updated_at=now)
        .on_conflict_do_nothing(index_elements=[UserProfileModel.user_id])
    )


# ---------------------------------------------------------------------------
# Book Repository
# ---------------------------------------------------------------------------
class BookRepository(IBookRepository):

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def create(self, book: Book) -> Book:
        db_book = BookModel(
            id=book.id,
            owner_id=book.owner_id,
            title=book.title,
            author=book.author,
            description=book.description,
            tags=list(book.tags),
            categories=list(book.categories),
            isbn=book.isbn,
            publisher=book.publisher,
            publication_date=book.publication_date,
            language=book.language,
            page_count=book.page_count,
            cover_url=book.cover_url,
            content_features=book.content_features.to_dict() if book.content_features else None,
            read_count=book.read_count,
            view_count=book.view_count,
            completion_count=book.completion_count,
            average_rating=book.average_rating,
            ratings=[self._rating_to_dict(r) for r in book.ratings],
            extraction_methods=list(book.extraction_methods),
            private=book.private,
            file=book.file.to_dict() if book.file else None,
            created_at=book.created_at,
            updated_at=book.updated_at,
        )
        async with self.session_maker() as session:
            session.add(db_book)
            await session.commit()
            await session.refresh(db_book)
            return self._to_entity(db_book)

    async def get_by_id(self, book_id: UUID) -> Optional[Book]:
        async with self.session_maker() as session:
            result = await session.execute(select(BookModel).where(BookModel.id == book_id))
            db_book = result.scalar_one_or_none()
            return self._to_entity(db_book) if db_book else None

    async def get_many(self, book_ids: list[UUID]) -> list[Book]:
        if not book_ids:
            return []
        async with self.session_maker() as session:
            result = await session.execute(select(BookModel).where(BookModel.id.in_(book_ids)))
            by_id = {model.id: self._to_entity(model) for model in result.scalars().all()}
        return [by_id[book_id] for book_id in book_ids if book_id in by_id]

    async def find_by_title(self, title: str) -> Optional[Book]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(BookModel).where(BookModel.title == title).order_by(BookModel.created_at).limit(1)
            )
            db_book = result.scalars().first()
            return self._to_entity(db_book) if db_book else None

    async def list_popular(self, limit: int, exclude_ids: Optional[list[UUID]] = None) -> list[Book]:
        stmt = select(BookModel).where(BookModel.private.is_(False))
        if exclude_ids:
            stmt = stmt.where(BookModel.id.notin_(exclude_ids))
        stmt = stmt.order_by(BookModel.read_count.desc(), BookModel.created_at).limit(limit)
        return await self._fetch(stmt)

    async def list_candidates(self, exclude_ids: list[UUID], limit: int) -> list[Book]:
        stmt = select(BookModel).where(BookModel.private.is_(False))
        if exclude_ids:
            stmt = stmt.where(BookModel.id.notin_(exclude_ids))
        stmt = stmt.order_by(BookModel.created_at.desc()).limit(limit)
        return await self._fetch(stmt)

    async def list_by_page_count(
        self, threshold: int, shorter: bool, exclude_ids: list[UUID], limit: int,
    ) -> list[Book]:
        stmt = select(BookModel).where(
            BookModel.private.is_(False),
            BookModel.page_count.is_not(None),
        )
        if shorter:
            stmt = stmt.where(BookModel.page_count < threshold)
        else:
            stmt = stmt.where(BookModel.page_count > threshold)
        if exclude_ids:
            stmt = stmt.where(BookModel.id.notin_(exclude_ids))
        stmt = stmt.order_by(BookModel.read_count.desc(), BookModel.created_at).limit(limit)
        return await self._fetch(stmt)

    async def list_by_owner(self, owner_id: str) -> list[Book]:
        stmt = (
            select(BookModel)
            .where(BookModel.owner_id == owner_id)
            .order_by(BookModel.created_at.desc())
        )
        return await self._fetch(stmt)

    async def search_by_owner(self, owner_id: str, term: str) -> list[Book]:
        stmt = (
            select(BookModel)
            .where(
                BookModel.owner_id == owner_id,
                or_(
                    BookModel.title.icontains(term, autoescape=True),
                    BookModel.author.icontains(term, autoescape=True),
                    BookModel.description.icontains(term, autoescape=True),
                ),
            )
            .order_by(BookModel.created_at.desc())
        )
        return await self._fetch(stmt)

    async def list_by_author(self, author: str, exclude_ids: list[UUID], limit: int) -> list[Book]:
        stmt = select(BookModel).where(BookModel.author == author, BookModel.private.is_(False))
        if exclude_ids:
            stmt = stmt.where(BookModel.id.notin_(exclude_ids))
        stmt = stmt.order_by(BookModel.read_count.desc()).limit(limit)
        return await self._fetch(stmt)

    async def list_by_tags(self, tags: list[str], exclude_ids: list[UUID], limit: int) -> list[Book]:
        if not tags:
            return []
        wanted = set(tags)
        stmt = select(BookModel).where(BookModel.private.is_(False))
        if exclude_ids:
            stmt = stmt.where(BookModel.id.notin_(exclude_ids))
        stmt = stmt.order_by(BookModel.read_count.desc()).limit(TAG_SCAN_LIMIT)
        books = await self._fetch(stmt)
        return [book for book in books if wanted.intersection(book.tags)][:limit]

    async def update(self, book: Book) -> Book:
        async with self.session_maker() as session:
            result = await session.execute(select(BookModel).where(BookModel.id == book.id))
            db_book = result.scalar_one()
            db_book.title = book.title
            db_book.author = book.author
            db_book.description = book.description
            db_book.tags = list(book.tags)
            db_book.categories = list(book.categories)
            db_book.isbn = book.isbn
            db_book.publisher = book.publisher
            db_book.publication_date = book.publication_date
            db_book.language = book.language
            db_book.page_count = book.page_count
            db_book.cover_url = book.cover_url
            db_book.private = book.private
            db_book.updated_at = datetime.utcnow()
            await session.commit()
            await session.refresh(db_book)
            return self._to_entity(db_book)

    async def update_content_features(self, book_id: UUID, features: ContentFeatures) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(
                update(BookModel)
                .where(BookModel.id == book_id)
                .values(content_features=features.to_dict(), updated_at=datetime.utcnow())
            )
            await session.commit()
            return result.rowcount > 0

    async def increment_counter(self, book_id: UUID, counter: str) -> None:
        column = COUNTER_COLUMNS.get(counter)
        if column is None:
            raise ValueError(f"Unknown counter: {counter}")
        async with self.session_maker() as session:
            await session.execute(
                update(BookModel).where(BookModel.id == book_id).values({column: column + 1})
            )
            await session.commit()

    async def add_rating(self, book_id: UUID, entry: RatingEntry) -> Optional[float]:
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(BookModel).where(BookModel.id == book_id).with_for_update()
                )
                db_book = result.scalar_one_or_none()
                if db_book is None:
                    return None
                ratings = list(db_book.ratings or []) + [self._rating_to_dict(entry)]
                db_book.ratings = ratings
                db_book.average_rating = sum(r["rating"] for r in ratings) / len(ratings)
                return db_book.average_rating

    async def delete(self, book_id: UUID) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(delete(BookModel).where(BookModel.id == book_id))
            await session.commit()
            return result.rowcount > 0

    async def count(self) -> int:
        async with self.session_maker() as session:
            result = await session.execute(select(func.count()).select_from(BookModel))
            return result.scalar_one()

    async def _fetch(self, stmt) -> list[Book]:
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return [self._to_entity(model) for model in result.scalars().all()]

    @staticmethod
    def _rating_to_dict(entry: RatingEntry) -> dict:
        return {
            "userId": entry.user_id,
            "rating": entry.rating,
            "timestamp": entry.timestamp.isoformat(),
        }

    @staticmethod
    def _to_entity(model: BookModel) -> Book:
        return Book(
            id=model.id,
            owner_id=model.owner_id,
            title=model.title,
            author=model.author,
            description=model.description or "",
            tags=list(model.tags or []),
            categories=list(model.categories or []),
            isbn=model.isbn,
            publisher=model.publisher,
            publication_date=model.publication_date,
            language=model.language,
            page_count=model.page_count,
            cover_url=model.cover_url or "",
            content_features=ContentFeatures.from_dict(model.content_features),
            read_count=model.read_count or 0,
            view_count=model.view_count or 0,
            completion_count=model.completion_count or 0,
            average_rating=model.average_rating or 0.0,
            ratings=[
                RatingEntry(user_id=r["userId"], rating=r["rating"], timestamp=_parse_ts(r.get("timestamp")))
                for r in (model.ratings or [])
            ],
            extraction_methods=list(model.extraction_methods or []),
            private=bool(model.private),
            file=FileReference.from_dict(model.file),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


# ---------------------------------------------------------------------------
# User Profile Repository
# ---------------------------------------------------------------------------
class UserProfileRepository(IUserProfileRepository):

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get(self, user_id: str) -> Optional[UserProfile]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(UserProfileModel).where(UserProfileModel.user_id == user_id)
            )
            db_profile = result.scalar_one_or_none()
            return self._to_entity(db_profile) if db_profile else None

    async def get_or_create(self, user_id: str) -> UserProfile:
        async with self.session_maker() as session:
            async with session.begin():
                db_profile = await self._load_for_update(session, user_id)
            return self._to_entity(db_profile)

    async def add_recently_read(self, user_id: str, book_id: UUID, cap: int) -> bool:
        async with self.session_maker() as session:
            async with session.begin():
                db_profile = await self._load_for_update(session, user_id)
                entries = list(db_profile.recently_read or [])
                if any(entry["bookId"] == str(book_id) for entry in entries):
                    return False
                entry = {"bookId": str(book_id), "timestamp": datetime.utcnow().isoformat()}
                db_profile.recently_read = ([entry] + entries)[:cap]
                db_profile.updated_at = datetime.utcnow()
                return True

    async def set_last_read(
        self, user_id: str, book_id: UUID, progress: float, cfi_location: Optional[str],
    ) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                db_profile = await self._load_for_update(session, user_id)
                last_read = dict(db_profile.last_read or {})
                last_read[str(book_id)] = {
                    "progress": progress,
                    "cfiLocation": cfi_location,
                    "timestamp": datetime.utcnow().isoformat(),
                }
                db_profile.last_read = last_read
                db_profile.updated_at = datetime.utcnow()

    @staticmethod
    async def _load_for_update(session: AsyncSession, user_id: str) -> UserProfileModel:
        """Lock the profile row, creating it first if this is a new user.

        Two first-time writers may both miss the row; the insert ignores the
        key conflict so the slower one locks the row the faster one created.
        """
        stmt = select(UserProfileModel).where(UserProfileModel.user_id == user_id).with_for_update()
        db_profile = (await session.execute(stmt)).scalar_one_or_none()
        if db_profile is None:
            await session.execute(_insert_profile_if_missing(session, user_id))
            db_profile = (await session.execute(stmt)).scalar_one()
        return db_profile

    @staticmethod
    def _to_entity(model: UserProfileModel) -> UserProfile:
        return UserProfile(
            user_id=model.user_id,
            display_name=model.display_name,
            recently_read=[
                RecentlyReadEntry(book_id=UUID(entry["bookId"]), timestamp=_parse_ts(entry.get("timestamp")))
                for entry in (model.recently_read or [])
            ],
            last_read={
                book_id: LastReadEntry(
                    progress=value.get("progress", 0),
                    cfi_location=value.get("cfiLocation"),
                    timestamp=_parse_ts(value.get("timestamp")),
                )
                for book_id, value in (model.last_read or {}).items()
            },
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


# ---------------------------------------------------------------------------
# Activity Repository
# ---------------------------------------------------------------------------
class ActivityRepository(IActivityRepository):

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def append(self, event: UserActivityEvent) -> UserActivityEvent:
        db_event = UserActivityModel(
            id=event.id,
            user_id=event.user_id,
            book_id=event.book_id,
            action=event.action.value,
            timestamp=event.timestamp,
            activity_metadata=dict(event.metadata),
        )
        async with self.session_maker() as session:
            session.add(db_event)
            await session.commit()
        return event

    async def list_for_user(
        self,
        user_id: str,
        actions: Optional[list[ActivityAction]] = None,
        limit: int = 100,
    ) -> list[UserActivityEvent]:
        stmt = select(UserActivityModel).where(UserActivityModel.user_id == user_id)
        if actions:
            stmt = stmt.where(UserActivityModel.action.in_([a.value for a in actions]))
        stmt = stmt.order_by(UserActivityModel.timestamp.desc()).limit(limit)
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return [self._to_entity(model) for model in result.scalars().all()]

    async def list_readers_of_book(self, book_id: UUID, exclude_user_id: str) -> list[str]:
        stmt = (
            select(UserActivityModel.user_id)
            .where(
                UserActivityModel.book_id == book_id,
                UserActivityModel.action.in_([a.value for a in READING_ACTIONS]),
                UserActivityModel.user_id != exclude_user_id,
            )
            .distinct()
        )
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_books_read_by(
        self, user_ids: list[str], per_user_limit: int = 20,
    ) -> dict[str, list[UUID]]:
        if not user_ids:
            return {}
        ranked = (
            select(
                UserActivityModel.user_id,
                UserActivityModel.book_id,
                UserActivityModel.timestamp,
                func.row_number()
                .over(partition_by=UserActivityModel.user_id, order_by=UserActivityModel.timestamp.desc())
                .label("position"),
            )
            .where(
                UserActivityModel.user_id.in_(user_ids),
                UserActivityModel.action.in_([a.value for a in READING_ACTIONS]),
            )
            .subquery()
        )
        stmt = (
            select(ranked.c.user_id, ranked.c.book_id)
            .where(ranked.c.position <= per_user_limit)
            .order_by(ranked.c.timestamp.desc())
        )
        books: dict[str, list[UUID]] = {}
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            for user_id, book_id in result.all():
                read = books.setdefault(user_id, [])
                if book_id not in read:
                    read.append(book_id)
        return books

    @staticmethod
    def _to_entity(model: UserActivityModel) -> UserActivityEvent:
        return UserActivityEvent(
            id=model.id,
            user_id=model.user_id,
            book_id=model.book_id,
            action=ActivityAction(model.action),
            timestamp=model.timestamp,
            metadata=dict(model.activity_metadata or {}),
        )


# ---------------------------------------------------------------------------
# Recommendation Event Repository
# ---------------------------------------------------------------------------
class RecommendationEventRepository(IRecommendationEventRepository):

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def record(self, event: RecommendationEvent) -> None:
        async with self.session_maker() as session:
            session.add(
                RecommendationEventModel(
                    id=event.id,
                    user_id=event.user_id,
                    variant=event.variant,
                    source_counts=dict(event.source_counts),
                    total=event.total,
                    timestamp=event.timestamp,
                )
            )
            await session.commit()
