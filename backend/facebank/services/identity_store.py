"""
SQLAlchemy-backed identity store.

Reads hand the resolver immutable snapshots. The bank append is the only
write path that mutates learned state, and it is guarded by the
``people.version`` column: SQLAlchemy issues
``UPDATE ... WHERE id = :id AND version = :old`` and raises
``StaleDataError`` when a concurrent confirmation committed first. The
append is then re-read and retried, so two near-simultaneous labels for
the same person both end up in the bank.
"""
from dataclasses import dataclass
from typing import Any, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from facebank.core.config import settings
from facebank.core.errors import (
    BankUpdateConflict,
    DuplicateIdentity,
    IdentityNotFound,
    StoreUnavailable,
)
from facebank.core.logging import get_logger
from facebank.models.face import Face
from facebank.models.identity import Identity
from facebank.schemas.identity_schema import PersonSummary, normalize_person_name
from facebank.services.embedding_bank import EmbeddingBank
from facebank.services.face_math import DEFAULT_DUPLICATE_THRESHOLD, validate_embedding
from facebank.services.matcher import IdentitySnapshot

logger = get_logger(__name__)


@dataclass(frozen=True)
class BankUpdate:
    identity_id: int
    name: str
    bank: EmbeddingBank
    appended: bool
    created: bool = False

    @property
    def embeddings_count(self) -> int:
        return len(self.bank)


class IdentityStore:
    """
    Identity persistence for one database session.

    Args:
        db: Active SQLAlchemy session. The store commits its own writes.
        duplicate_threshold: Cosine similarity treated as a repeated sample.
        max_retries: Attempts for a bank append that keeps hitting
                     version conflicts. Zero gives up without writing.
    """

    def __init__(
        self,
        db: Session,
        duplicate_threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
        max_retries: Optional[int] = None,
    ):
        self.db = db
        self.duplicate_threshold = duplicate_threshold
        self.max_retries = settings.BANK_APPEND_MAX_RETRIES if max_retries is None else max_retries

    # READS

    def list_identities(self, owner_id: int) -> List[IdentitySnapshot]:
        """
        Snapshots every person of the owner whose bank is non-empty.

        Raises:
            StoreUnavailable: The query failed.
        """
        try:
            rows = self.db.execute(
                select(Identity.id, Identity.name, Identity.embeddings)
                .where(Identity.owner_id == owner_id)
                .order_by(Identity.id)
            ).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to list identities: {e}", extra={"owner_id": owner_id})
            raise StoreUnavailable(f"Identity store read failed: {e}", cause=e) from e

        snapshots = [IdentitySnapshot.from_record(row.id, row.name, row.embeddings) for row in rows]
        return [s for s in snapshots if not s.bank.is_empty()]

    def get_identity(self, identity_id: int) -> Identity:
        try:
            identity = self.db.get(Identity, identity_id, populate_existing=True)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Identity store read failed: {e}", cause=e) from e
        if identity is None:
            raise IdentityNotFound(f"Person {identity_id} not found.")
        return identity

    def find_by_name(self, owner_id: int, name: str) -> Optional[Identity]:
        try:
            return self.db.execute(
                select(Identity).where(
                    Identity.owner_id == owner_id,
                    Identity.name == normalize_person_name(name),
                )
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Identity store read failed: {e}", cause=e) from e

    def list_people(self, owner_id: int) -> List[PersonSummary]:
        """
        People of the owner with the number of distinct photos labeled for
        each, most-photographed first, then by name.
        """
        photo_count = func.count(func.distinct(Face.photo_id))
        try:
            rows = self.db.execute(
                select(Identity, photo_count.label("photos"), func.max(Face.created_at).label("last_labeled_at"))
                .outerjoin(Face, Face.identity_id == Identity.id)
                .where(Identity.owner_id == owner_id)
                .group_by(Identity.id)
            ).all()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Identity store read failed: {e}", cause=e) from e

        people = [
            PersonSummary(
                person_id=identity.id,
                name=identity.name,
                photos=photos or 0,
                embeddings_count=identity.embeddings_count,
                sample_image_url=identity.image_url,
                last_labeled_at=last_labeled_at,
            )
            for identity, photos, last_labeled_at in rows
        ]
        people.sort(key=lambda p: (-p.photos, p.name))
        return people

    # WRITES

    def create_identity(
        self,
        owner_id: int,
        name: str,
        initial_vector: Any,
        image_url: Optional[str] = None,
        merge_on_conflict: bool = True,
    ) -> BankUpdate:
        """
        Creates a person seeded with one embedding.

        When another writer created the same owner/name first, the unique
        constraint fires and the vector is appended to that person instead,
        unless ``merge_on_conflict`` is False.

        Raises:
            InvalidEmbedding: ``initial_vector`` is unusable.
            DuplicateIdentity: Name taken and ``merge_on_conflict`` is False.
            StoreUnavailable: The write failed.
        """
        vector = validate_embedding(initial_vector)
        bank = EmbeddingBank([vector])
        identity = Identity(
            owner_id=owner_id,
            name=normalize_person_name(name),
            embeddings=bank.to_storage(),
            centroid=bank.centroid_for_storage(),
            image_url=image_url,
        )
        try:
            self.db.add(identity)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if not merge_on_conflict:
                raise DuplicateIdentity(
                    f"Person '{normalize_person_name(name)}' already exists.", cause=e
                ) from e
            existing = self.find_by_name(owner_id, name)
            if existing is None:
                raise StoreUnavailable("Person creation conflicted but no row was found.")
            logger.info(
                f"Person '{normalize_person_name(name)}' created concurrently; appending instead.",
                extra={"owner_id": owner_id, "identity_id": existing.id},
            )
            return self.append_to_bank(existing.id, vector)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Identity store write failed: {e}", cause=e) from e

        self.db.refresh(identity)
        logger.info(
            f"Created person '{identity.name}'.",
            extra={"owner_id": owner_id, "identity_id": identity.id},
        )
        return BankUpdate(identity.id, identity.name, bank, appended=True, created=True)

    def append_to_bank(self, identity_id: int, vector: Any) -> BankUpdate:
        """
        Appends a confirmed embedding to a person's bank.

        The bank is re-read on every attempt; a duplicate sample returns
        without writing. A lost version race rolls back and retries.

        Returns:
            BankUpdate: The bank as stored after the call.

        Raises:
            InvalidEmbedding: Unusable vector; nothing is written.
            DimensionMismatch: Vector length differs from the bank; nothing
                               is written.
            IdentityNotFound: No such person.
            BankUpdateConflict: Every retry lost the race.
            StoreUnavailable: The database failed.
        """
        vector = validate_embedding(vector)

        for attempt in range(1, self.max_retries + 1):
            identity = self.get_identity(identity_id)
            bank = EmbeddingBank.from_storage(identity.embeddings)

            # Raises before anything is written
            appended = bank.append(vector, self.duplicate_threshold)
            if not appended:
                return BankUpdate(identity.id, identity.name, bank, appended=False)

            identity.embeddings = bank.to_storage()
            identity.centroid = bank.centroid_for_storage()
            try:
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                logger.warning(
                    f"Bank append lost a version race (attempt {attempt}/{self.max_retries}); retrying.",
                    extra={"identity_id": identity_id},
                )
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Bank append failed: {e}", extra={"identity_id": identity_id})
                raise StoreUnavailable(f"Identity store write failed: {e}", cause=e) from e

            logger.info(
                f"Appended embedding to '{identity.name}' (bank size {len(bank)}).",
                extra={"identity_id": identity_id},
            )
            return BankUpdate(identity.id, identity.name, bank, appended=True)

        raise BankUpdateConflict(
            f"Bank append for person {identity_id} kept conflicting after {self.max_retries} attempts."
        )

    def get_or_create_and_append(self, owner_id: int, name: str, vector: Any) -> BankUpdate:
        existing = self.find_by_name(owner_id, name)
        if existing is None:
            return self.create_identity(owner_id, name, vector)
        return self.append_to_bank(existing.id, vector)
