from typing import Optional


class FaceBankError(Exception):
    """
    Base class for every error raised by the identity engine.

    Each subclass carries a short machine-readable ``reason`` that ends up in
    the ``strategy`` / ``error`` diagnostics attached to a resolved face.
    """

    reason = "facebank_error"

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message or self.reason)


class InvalidEmbedding(FaceBankError):
    """Vector is empty, not numeric, not one-dimensional or holds non-finite values."""

    reason = "invalid_embedding"


class DimensionMismatch(FaceBankError):
    """Vector length disagrees with the dimension of an identity's bank."""

    reason = "dimension_mismatch"

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding length mismatch for this person: expected {expected}, got {actual}."
        )


class NoIdentitiesToCompare(FaceBankError):
    """The owner has no labeled person with a non-empty bank yet."""

    reason = "no_identities"


class StoreUnavailable(FaceBankError):
    """Identity store read or write failed."""

    reason = "store_unavailable"


class BankUpdateConflict(StoreUnavailable):
    """Optimistic bank append kept losing the version race."""

    reason = "bank_update_conflict"


class IdentityNotFound(FaceBankError):
    reason = "identity_not_found"


class DuplicateIdentity(FaceBankError):
    reason = "duplicate_identity"


class FaceNotFound(FaceBankError):
    reason = "face_not_found"


class InvalidLabel(FaceBankError):
    """Label name is blank or one of the reserved 'unknown' placeholders."""

    reason = "invalid_label"


class EnrollmentRejected(FaceBankError):
    """Reference photo cannot seed a new identity (face count, clarity, duplicate name)."""

    reason = "enrollment_rejected"
