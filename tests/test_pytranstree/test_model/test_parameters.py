"""Tests for parameter fields, priors and sharing."""

import numpy as np
import pytest

from pytranstree.exceptions import InputValidationError, SharingMaskMismatchError
from pytranstree.parameters import (
    FIELDS,
    ParameterSnapshot,
    ParameterVector,
    Priors,
    SharedParameterStore,
    canonical_field,
    ordered_fields,
    resolve_sharing_mask,
)


def test_canonical_field() -> None:
    """Test that dotted and underscored names are accepted."""

    assert canonical_field("off.r") == "off.r"
    assert canonical_field("off_r") == "off.r"
    assert canonical_field("ws_scale") == "ws.scale"
    with pytest.raises(InputValidationError, match="Unknown parameter field"):
        canonical_field("R0")


def test_ordered_fields() -> None:
    """Test that fields are put in the fixed order without duplicates."""

    assert ordered_fields(["pi", "neg", "off_p", "pi"]) == ("neg", "off.p", "pi")


class TestParameterSnapshot:
    """Tests for the immutable parameter values."""

    def test_lookup(self, params: ParameterSnapshot) -> None:
        assert params["off.r"] == params["off_r"] == params.off_r
        assert list(params.as_dict()) == list(FIELDS)

    def test_reproduction_number(self, params: ParameterSnapshot) -> None:
        assert params.reproduction_number == pytest.approx(1.0)
        assert params.with_value("off.r", 2.0).reproduction_number == pytest.approx(2.0)

    def test_means(self, params: ParameterSnapshot) -> None:
        assert params.generation_mean == pytest.approx(1.0)
        assert params.sampling_mean == pytest.approx(1.0)

    def test_with_value_copies(self, params: ParameterSnapshot) -> None:
        changed = params.with_value("pi", 0.9)
        assert changed.pi == 0.9
        assert params.pi == 0.5

    def test_from_mapping(self, params: ParameterSnapshot) -> None:
        assert ParameterSnapshot.from_mapping(params.as_dict()) == params
        with pytest.raises(InputValidationError, match="Missing"):
            ParameterSnapshot.from_mapping({"neg": 1.0})

    @pytest.mark.parametrize(
        "field, value",
        [("neg", 0.0), ("off.r", -1.0), ("off.p", 1.0), ("pi", 1.5), ("w.scale", np.inf)],
    )
    def test_validate(self, params: ParameterSnapshot, field: str, value: float) -> None:
        with pytest.raises(InputValidationError):
            params.with_value(field, value).validate()


class TestPriors:
    """Tests for the prior densities."""

    def test_defaults(self) -> None:
        priors = Priors()
        assert priors.log_prior("neg", 2.0) == pytest.approx(-2.0)
        assert priors.log_prior("off.r", 0.5) == pytest.approx(-0.5)
        assert priors.log_prior("off.p", 0.3) == 0.0
        assert priors.log_prior("pi", 0.7) == pytest.approx(0.0)

    def test_outside_support(self) -> None:
        priors = Priors()
        assert priors.log_prior("off.p", 1.2) == -np.inf
        assert priors.log_prior("neg", -1.0) == -np.inf
        assert priors.log_prior("pi", 1.1) == -np.inf

    def test_beta_prior(self) -> None:
        priors = Priors(pi_a=2.0, pi_b=2.0)
        # Beta(2, 2) density is 6 x (1 - x)
        assert priors.log_prior("pi", 0.5) == pytest.approx(np.log(1.5))

    def test_fixed_fields(self) -> None:
        priors = Priors(fixed_rate=2.0)
        assert priors.log_prior("w.shape", 1.0) == pytest.approx(np.log(2.0) - 2.0)

    def test_invalid_hyperparameter(self) -> None:
        with pytest.raises(InputValidationError):
            Priors(neg_rate=0.0)


class TestSharingMask:
    """Tests for resolving the fields shared across datasets."""

    def test_none(self) -> None:
        assert resolve_sharing_mask(None, 3) == frozenset()
        assert resolve_sharing_mask([], 3) == frozenset()

    def test_single_name(self) -> None:
        assert resolve_sharing_mask("pi", 2) == frozenset({"pi"})

    def test_common_collection(self) -> None:
        assert resolve_sharing_mask(["pi", "off_r"], 2) == frozenset({"pi", "off.r"})

    def test_per_dataset_agreeing(self) -> None:
        share = [["pi", "neg"], ["neg", "pi"], {"pi", "neg"}]
        assert resolve_sharing_mask(share, 3) == frozenset({"pi", "neg"})

    def test_per_dataset_disagreeing(self) -> None:
        with pytest.raises(SharingMaskMismatchError, match="disagree"):
            resolve_sharing_mask([["pi"], ["neg"]], 2)

    def test_wrong_number_of_masks(self) -> None:
        with pytest.raises(SharingMaskMismatchError, match="3 datasets"):
            resolve_sharing_mask([["pi"], ["pi"]], 3)

    def test_unknown_field(self) -> None:
        with pytest.raises(InputValidationError):
            resolve_sharing_mask(["pi", "sigma"], 2)


class TestParameterVector:
    """Tests for per-dataset parameters backed by the shared store."""

    def test_reads_shared_from_store(self, params: ParameterSnapshot) -> None:
        store = SharedParameterStore({"pi": 0.5})
        a = ParameterVector(params, store, frozenset({"pi"}))
        b = ParameterVector(params, store, frozenset({"pi"}))
        store.write("pi", 0.8)
        assert a["pi"] == b["pi"] == 0.8
        assert a.snapshot().pi == 0.8
        assert "pi" not in a.local_values()

    def test_set_local(self, params: ParameterSnapshot) -> None:
        vector = ParameterVector(params, SharedParameterStore({"pi": 0.5}), frozenset({"pi"}))
        vector.set_local("off_r", 3.0)
        assert vector["off.r"] == 3.0
        assert vector.is_shared("pi")
        assert not vector.is_shared("off.r")
        with pytest.raises(KeyError, match="shared"):
            vector.set_local("pi", 0.1)

    def test_shared_field_missing_from_store(self, params: ParameterSnapshot) -> None:
        with pytest.raises(SharingMaskMismatchError):
            ParameterVector(params, SharedParameterStore(), frozenset({"pi"}))

    def test_store_rejects_unshared_write(self) -> None:
        store = SharedParameterStore({"pi": 0.5})
        with pytest.raises(KeyError):
            store.write("neg", 1.0)
        assert store.fields == ("pi",)
        assert store.as_dict() == {"pi": 0.5}
