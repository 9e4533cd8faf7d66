import numpy as np
import pytest

from recommender.errors import ModelIntegrityError
from recommender.factory import load_model, save_model
from recommender.model import BiMap, ECommModel, Item, ProductModel


def test_bimap_round_trip_and_unknowns():
    m = BiMap(["a", "b", "c"])
    assert m.to_index("b") == 1
    assert m.to_id(2) == "c"
    assert m.to_index("zzz") is None
    assert m.indices({"a", "c", "zzz"}) == {0, 2}
    assert len(m) == 3 and "a" in m


def test_bimap_rejects_duplicates():
    with pytest.raises(ValueError):
        BiMap(["a", "a"])


def test_item_categories_are_immutable():
    item = Item(categories=["x", "y"])
    assert item.categories == ("x", "y")
    assert Item().categories is None


def test_rank_invariant_enforced_for_users():
    with pytest.raises(ModelIntegrityError):
        ECommModel(rank=2, user_features={0: np.array([1.0, 2.0, 3.0])}, product_models={},
                   user_index=BiMap(["u"]), item_index=BiMap([]))


def test_rank_invariant_enforced_for_items():
    with pytest.raises(ModelIntegrityError):
        ECommModel(rank=2, user_features={},
                   product_models={0: ProductModel(item=Item(), features=np.array([1.0]))},
                   user_index=BiMap([]), item_index=BiMap(["i"]))


def test_vectors_are_read_only(toy_model):
    with pytest.raises(ValueError):
        toy_model.user_features[0][0] = 5.0
    with pytest.raises(ValueError):
        toy_model.product_models[0].features[0] = 5.0


def test_user_feature_lookup(toy_model):
    assert list(toy_model.user_feature("u1")) == [1.0, 0.0]
    assert toy_model.user_feature("nobody") is None


def test_save_and_load_preserve_model(tmp_path, catalog_model):
    save_model(catalog_model, tmp_path / "m", meta={"note": "test"})
    loaded = load_model(tmp_path / "m")

    assert loaded.rank == catalog_model.rank
    assert loaded.item_index.ids() == catalog_model.item_index.ids()
    assert loaded.user_index.ids() == ["alice"]
    assert loaded.meta["note"] == "test"
    for i, pm in catalog_model.product_models.items():
        got = loaded.product_models[i]
        assert got.count == pm.count
        assert got.item.categories == pm.item.categories
        if pm.features is None:
            assert got.features is None
        else:
            np.testing.assert_allclose(got.features, pm.features)


def test_load_detects_out_of_sync_artifacts(tmp_path, toy_model):
    out = save_model(toy_model, tmp_path / "m")
    np.save(out / "item_factors.npy", np.zeros((5, 2)))
    with pytest.raises(ModelIntegrityError):
        load_model(out)


def test_item_matrix_rows_align_with_product_models(catalog_model):
    matrix = catalog_model.item_matrix
    assert len(matrix) == 5
    assert matrix.indices.tolist() == [0, 1, 2, 3, 4]
    assert matrix.has_features.tolist() == [True, True, True, True, False]
    assert matrix.factors[4].tolist() == [0.0, 0.0]
    assert matrix.counts.tolist() == [3.0, 7.0, 1.0, 0.0, 20.0]
    assert matrix.norms[1] == pytest.approx(1.0)
    assert matrix.items[1].categories == ("phones", "cases")
    with pytest.raises(ValueError):
        matrix.factors[0, 0] = 9.0
