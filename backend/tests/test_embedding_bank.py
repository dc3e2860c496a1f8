import pytest
import numpy as np

from facebank.core.errors import DimensionMismatch, InvalidEmbedding
from facebank.services.embedding_bank import EmbeddingBank
from facebank.services.face_math import compute_cosine_similarity


class TestEmbeddingBankAppend:

    def test_append_grows_bank_and_refreshes_centroid(self):
        bank = EmbeddingBank([np.array([1.0, 0.0])])

        assert bank.append([0.0, 1.0]) is True

        assert len(bank) == 2
        assert bank.centroid.tolist() == [0.5, 0.5]


    def test_duplicate_leaves_bank_untouched(self, unit_vector_128, near_duplicate_vector_128):
        bank = EmbeddingBank([unit_vector_128])
        centroid_before = bank.centroid.copy()

        assert bank.append(near_duplicate_vector_128) is False

        assert len(bank) == 1
        assert np.array_equal(bank.centroid, centroid_before)


    def test_same_person_new_photo_is_kept(self, unit_vector_128, similar_vector_128):
        bank = EmbeddingBank([unit_vector_128])
        assert bank.append(similar_vector_128) is True
        assert len(bank) == 2


    def test_dimension_mismatch_raises_before_mutation(self):
        bank = EmbeddingBank([np.array([1.0, 0.0, 0.0])])

        with pytest.raises(DimensionMismatch) as exc_info:
            bank.append([1.0, 0.0])

        assert exc_info.value.expected == 3
        assert exc_info.value.actual == 2
        assert len(bank) == 1
        assert bank.centroid.tolist() == [1.0, 0.0, 0.0]


    def test_invalid_vector_raises(self):
        bank = EmbeddingBank()
        with pytest.raises(InvalidEmbedding):
            bank.append([])
        assert bank.is_empty()


    def test_first_append_sets_dimension(self):
        bank = EmbeddingBank()
        assert bank.dimension is None
        bank.append([0.2, 0.4, 0.4])
        assert bank.dimension == 3


    def test_append_order_is_kept(self):
        bank = EmbeddingBank()
        for vector in ([1.0, 0.0], [0.0, 1.0], [1.0, 1.0]):
            bank.append(vector)
        assert bank.to_storage() == [[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]


class TestEmbeddingBankConstruction:

    def test_mixed_dimensions_rejected(self):
        with pytest.raises(DimensionMismatch):
            EmbeddingBank([np.ones(3), np.ones(4)])


    def test_from_storage_reads_legacy_flat_vector(self):
        bank = EmbeddingBank.from_storage([0.6, 0.8])
        assert len(bank) == 1
        assert bank.centroid.tolist() == [0.6, 0.8]


    def test_from_storage_drops_vectors_of_another_dimension(self):
        bank = EmbeddingBank.from_storage([[1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0]])
        assert len(bank) == 2
        assert bank.dimension == 2


    def test_from_storage_empty(self):
        bank = EmbeddingBank.from_storage(None)
        assert bank.is_empty()
        assert bank.centroid_for_storage() is None
        assert bank.comparison_points() == []


    def test_centroid_is_recomputed_on_load(self):
        """A stale stored centroid never leaks in: it is derived from the bank."""
        bank = EmbeddingBank.from_storage([[1.0, 0.0], [0.0, 1.0]])
        assert bank.centroid_for_storage() == [0.5, 0.5]


    def test_comparison_points_include_centroid(self):
        bank = EmbeddingBank.from_storage([[1.0, 0.0], [0.0, 1.0]])
        points = bank.comparison_points()
        assert len(points) == 3
        assert points[-1].tolist() == [0.5, 0.5]


    def test_vectors_returns_a_copy(self):
        bank = EmbeddingBank.from_storage([[1.0, 0.0]])
        bank.vectors.append(np.array([0.0, 1.0]))
        assert len(bank) == 1


class TestCentroidIdempotence:

    def test_recompute_without_mutation_is_stable(self, unit_vector_128, similar_vector_128):
        bank = EmbeddingBank([unit_vector_128, similar_vector_128])
        first = bank.recompute_centroid().copy()
        second = bank.recompute_centroid()
        assert np.array_equal(first, second)


    def test_storage_round_trip_keeps_centroid(self, unit_vector_128, similar_vector_128):
        bank = EmbeddingBank([unit_vector_128, similar_vector_128])
        reloaded = EmbeddingBank.from_storage(bank.to_storage())
        assert reloaded.centroid_for_storage() == bank.centroid_for_storage()


def test_known_face_repeated_is_a_no_op():
    """bank [[1, 0, 0]], query [1, 0, 0]: similarity 1.0, duplicate, nothing appended."""
    bank = EmbeddingBank.from_storage([[1.0, 0.0, 0.0]])

    assert compute_cosine_similarity(bank.vectors[0], [1.0, 0.0, 0.0]) == 1.0
    assert bank.is_duplicate([1.0, 0.0, 0.0])
    assert bank.append([1.0, 0.0, 0.0]) is False
    assert len(bank) == 1
    assert bank.centroid.tolist() == [1.0, 0.0, 0.0]
