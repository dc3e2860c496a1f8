import logging
from unittest.mock import patch

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from facebank.core.errors import (
    DimensionMismatch,
    EnrollmentRejected,
    FaceNotFound,
    InvalidEmbedding,
    InvalidLabel,
    StoreUnavailable,
)
from facebank.models.face import Face
from facebank.models.identity import Identity
from facebank.schemas.identity_schema import LabelRequest, validate_label
from facebank.services.identity_store import IdentityStore
from facebank.services.labeling import confirm_face_label, enroll_identity
from tests.mocks import make_face, make_face_row

OWNER_ID = 1


def _stored_face(db_session, embedding, photo_id="photo-1") -> Face:
    face = make_face_row(OWNER_ID, embedding, photo_id=photo_id)
    db_session.add(face)
    db_session.commit()
    return face


class TestValidateLabel:

    def test_normalizes(self):
        assert validate_label("  Alice  ") == "alice"


    @pytest.mark.parametrize("name", ["", "   ", None, "Unknown", "unknown_person", "UNKNOWN PERSON"])
    def test_rejects_blank_and_reserved(self, name):
        with pytest.raises(InvalidLabel):
            validate_label(name)


    def test_label_request_schema(self):
        assert LabelRequest(face_id=3, name=" Bob ").name == "bob"
        with pytest.raises(ValidationError):
            LabelRequest(face_id=3, name="unknown")


    @pytest.mark.parametrize("name", ["   ", "Unknown Person"])
    def test_label_request_reports_same_reason_as_service(self, name):
        with pytest.raises(InvalidLabel) as service_error:
            validate_label(name)
        with pytest.raises(ValidationError) as schema_error:
            LabelRequest(face_id=3, name=name)

        assert str(service_error.value) in str(schema_error.value)


class TestConfirmFaceLabel:

    def test_first_label_creates_person(self, db_session):
        face = _stored_face(db_session, [1.0, 0.0, 0.0])

        result = confirm_face_label(db_session, face.id, "Alice")

        assert result.name == "alice"
        assert result.embeddings_count == 1
        assert result.appended
        assert result.learning_confirmed
        db_session.refresh(face)
        assert face.identity_id == result.person_id
        assert face.learning_confirmed is True


    def test_second_label_grows_bank(self, db_session):
        first = _stored_face(db_session, [1.0, 0.0, 0.0], photo_id="p1")
        second = _stored_face(db_session, [0.9, 0.1, 0.0], photo_id="p2")

        confirm_face_label(db_session, first.id, "alice")
        result = confirm_face_label(db_session, second.id, "alice")

        assert result.embeddings_count == 2
        assert db_session.query(Identity).count() == 1


    def test_repeat_label_does_not_duplicate_sample(self, db_session):
        face = _stored_face(db_session, [1.0, 0.0, 0.0])

        confirm_face_label(db_session, face.id, "alice")
        result = confirm_face_label(db_session, face.id, "alice")

        assert not result.appended
        assert result.embeddings_count == 1


    def test_camel_case_payload(self, db_session):
        face = _stored_face(db_session, [1.0, 0.0, 0.0])

        payload = confirm_face_label(db_session, face.id, "alice").model_dump(by_alias=True)

        assert payload["faceId"] == face.id
        assert payload["embeddingsCount"] == 1
        assert payload["learningConfirmed"] is True


    def test_missing_face(self, db_session):
        with pytest.raises(FaceNotFound):
            confirm_face_label(db_session, 404, "alice")


    def test_face_without_embedding(self, db_session):
        face = _stored_face(db_session, None)

        with pytest.raises(InvalidEmbedding):
            confirm_face_label(db_session, face.id, "alice")

        assert db_session.query(Identity).count() == 0


    def test_reserved_label_rejected_before_any_write(self, db_session):
        face = _stored_face(db_session, [1.0, 0.0, 0.0])

        with pytest.raises(InvalidLabel):
            confirm_face_label(db_session, face.id, "unknown")

        assert db_session.query(Identity).count() == 0


    def test_dimension_mismatch_leaves_face_unconfirmed(self, db_session):
        first = _stored_face(db_session, [1.0, 0.0, 0.0], photo_id="p1")
        odd = _stored_face(db_session, [1.0, 0.0], photo_id="p2")
        confirm_face_label(db_session, first.id, "alice")

        with pytest.raises(DimensionMismatch):
            confirm_face_label(db_session, odd.id, "alice")

        db_session.refresh(odd)
        assert odd.identity_id is None
        assert odd.learning_confirmed is False


    def test_face_link_failure_after_bank_append_is_logged(self, db_session, caplog):
        face = _stored_face(db_session, [1.0, 0.0, 0.0])
        real_commit = db_session.commit
        commits = []

        def link_commit_fails():
            commits.append(1)
            # First commit creates the person, second links the face
            if len(commits) == 2:
                raise OperationalError("UPDATE", {}, Exception("connection lost"))
            real_commit()

        with caplog.at_level(logging.ERROR, logger="facebank.services.labeling"):
            with patch.object(db_session, "commit", side_effect=link_commit_fails):
                with pytest.raises(StoreUnavailable):
                    confirm_face_label(db_session, face.id, "alice")

        person = db_session.query(Identity).filter_by(name="alice").one()
        assert person.embeddings == [[1.0, 0.0, 0.0]]
        db_session.refresh(face)
        assert face.identity_id is None
        assert face.learning_confirmed is False
        assert "face link failed" in caplog.text
        assert f"face {face.id} is left unconfirmed" in caplog.text


class TestEnrollIdentity:

    def test_enrolls_from_single_clear_face(self, db_session):
        response = enroll_identity(
            db_session,
            OWNER_ID,
            "Alice",
            [make_face([1.0, 0.0, 0.0], confidence=0.97)],
            image_url="https://photos.example.com/alice.jpg",
        )

        assert response.name == "alice"
        assert response.owner_id == OWNER_ID
        assert response.embeddings_count == 1
        assert response.image_url == "https://photos.example.com/alice.jpg"


    def test_rejected_faces_do_not_count(self, db_session):
        response = enroll_identity(
            db_session,
            OWNER_ID,
            "alice",
            [
                make_face([1.0, 0.0, 0.0], confidence=0.97),
                make_face([0.0, 1.0, 0.0], confidence=0.3, accepted=False),
            ],
        )
        assert response.embeddings_count == 1


    @pytest.mark.parametrize("count", [0, 2])
    def test_requires_exactly_one_face(self, db_session, count):
        faces = [make_face([1.0, float(i), 0.0], confidence=0.97) for i in range(count)]

        with pytest.raises(EnrollmentRejected, match="exactly one person"):
            enroll_identity(db_session, OWNER_ID, "alice", faces)


    def test_requires_clear_face(self, db_session):
        with pytest.raises(EnrollmentRejected, match="not clear enough"):
            enroll_identity(db_session, OWNER_ID, "alice", [make_face([1.0, 0.0, 0.0], confidence=0.5)])


    def test_existing_name_rejected(self, db_session):
        IdentityStore(db_session).create_identity(OWNER_ID, "alice", [1.0, 0.0, 0.0])

        with pytest.raises(EnrollmentRejected, match="already exists"):
            enroll_identity(db_session, OWNER_ID, "ALICE", [make_face([0.0, 1.0, 0.0], confidence=0.97)])


    def test_invalid_name(self, db_session):
        with pytest.raises(InvalidLabel):
            enroll_identity(db_session, OWNER_ID, "unknown", [make_face([1.0, 0.0, 0.0], confidence=0.97)])
