"""
Tests for object models and the model fitting orchestrator.

Tests for:
- Object model invariants (unique keys, freeze)
- Model spec resolution
- Per-object ensembles, priors and time weighting
- Error taxonomy (schema vs data sufficiency)
"""

from typing import List

import numpy as np
import pytest

from bayesbag.bayesian.attribute import BernoulliBeta, Normal, PoissonGamma
from bayesbag.bayesian.fitting import fit_ensemble, fit_ensembles, resolve_model_spec
from bayesbag.bayesian.object_model import Ensemble, ObjectModel
from bayesbag.bayesian.weighting import TimeWeighting
from bayesbag.data.models import Match, ParticipantSlot
from bayesbag.errors import DataSufficiencyError, SchemaError


def make_match(a, b, a_attrs, b_attrs, y=1, time=None) -> Match:
    return Match(
        slots=(ParticipantSlot(a, a_attrs), ParticipantSlot(b, b_attrs)),
        y=y,
        time=time,
    )


@pytest.fixture
def matches() -> List[Match]:
    return [
        make_match("A", "B", {"P2M": 10, "WIN": 1}, {"P2M": 8, "WIN": 0}, time=0),
        make_match("B", "C", {"P2M": 6, "WIN": 1}, {"P2M": 4, "WIN": 0}, time=100),
        make_match("C", "A", {"P2M": 5, "WIN": 0}, {"P2M": 0, "WIN": 1}, time=365),
    ]


class TestObjectModel:
    """Test ObjectModel invariants."""

    def test_add_and_broadcast(self):
        model = ObjectModel("A")
        model.add_attribute_model("P2M", PoissonGamma(4.0))
        model.add_attribute_model("WIN", BernoulliBeta(0.25))

        assert model.mean() == {"P2M": 4.0, "WIN": 0.25}
        assert model.variance()["WIN"] == pytest.approx(0.1875)
        assert list(model) == ["P2M", "WIN"]
        assert len(model) == 2

    def test_duplicate_name_rejected(self):
        model = ObjectModel("A", {"P2M": PoissonGamma(1.0)})

        with pytest.raises(KeyError):
            model.add_attribute_model("P2M", PoissonGamma(2.0))

    def test_joint_key_overlap_rejected(self):
        model = ObjectModel("A", {"P2M": PoissonGamma(1.0)})

        with pytest.raises(KeyError):
            model.add_attribute_model(("P2M", "P3M"), PoissonGamma(2.0))

    def test_frozen_is_read_only(self):
        model = ObjectModel("A", {"P2M": PoissonGamma(1.0)}).freeze()

        with pytest.raises(TypeError):
            model.add_attribute_model("WIN", BernoulliBeta(0.5))

    def test_attribute_names_flatten_joint_keys(self):
        model = ObjectModel("A")
        model.add_attribute_model(("P2M", "P3M"), object())
        model.add_attribute_model("WIN", object())

        assert model.attribute_names == ["P2M", "P3M", "WIN"]

    def test_sample_shapes(self):
        model = ObjectModel("A", {"P2M": PoissonGamma(3.0)})

        assert model.sample(4, rng=0)["P2M"].shape == (4,)


class TestEnsemble:
    """Test Ensemble ordering."""

    def test_one_based_draw(self):
        models = [ObjectModel("A", draw_index=i) for i in (1, 2, 3)]
        ensemble = Ensemble("A", models)

        assert len(ensemble) == 3
        assert ensemble.draw(1) is models[0]
        assert ensemble.draw(3) is models[2]

    def test_draw_out_of_range(self):
        ensemble = Ensemble("A", [ObjectModel("A")])

        with pytest.raises(IndexError):
            ensemble.draw(2)

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            Ensemble("A", [])


class TestResolveModelSpec:
    """Test model spec resolution."""

    def test_single_family(self):
        spec = resolve_model_spec("poisson", ["P2M", "WIN"])

        assert [g.key for g in spec.groups] == ["P2M", "WIN"]
        assert all(g.family is PoissonGamma for g in spec.groups)

    def test_mapping(self):
        spec = resolve_model_spec({"P2M": "poisson", "WIN": "bernoulli"}, ["P2M", "WIN"])

        assert spec.groups[1].family is BernoulliBeta

    def test_mapping_subset(self):
        spec = resolve_model_spec({"WIN": "bernoulli"}, ["P2M", "WIN"])

        assert spec.attribute_names == ["WIN"]

    def test_dependent_descriptor(self):
        spec = resolve_model_spec({"dependent": True, "type": "mvn"}, ["P2M", "P3M"])

        assert len(spec.groups) == 1
        assert spec.groups[0].key == ("P2M", "P3M")

    def test_dependent_requires_joint_family(self):
        with pytest.raises(SchemaError, match="jointly"):
            resolve_model_spec({"dependent": True, "type": "poisson"}, ["P2M"])

    def test_unknown_family(self):
        with pytest.raises(SchemaError):
            resolve_model_spec({"P2M": "weibull"}, ["P2M"])

    def test_absent_attribute(self):
        with pytest.raises(SchemaError, match="absent"):
            resolve_model_spec({"P3M": "poisson"}, ["P2M"])

    def test_callable(self):
        def custom(table, num_draws):
            return []

        assert resolve_model_spec(custom, ["P2M"]).custom is custom

    def test_no_attributes(self):
        with pytest.raises(SchemaError):
            resolve_model_spec("poisson", [])


class TestFitEnsembles:
    """Test first-level ensemble fitting."""

    def test_point_estimates_pool_all_slots(self, matches):
        ensembles = fit_ensembles(matches, 1, {"P2M": "poisson"})

        # A scored 10 (slot 1) and 0 (slot 2)
        assert ensembles["A"].draw(1)["P2M"].mean() == pytest.approx(5.0)
        assert ensembles["B"].draw(1)["P2M"].mean() == pytest.approx(7.0)
        assert ensembles["C"].draw(1)["P2M"].mean() == pytest.approx(4.5)

    def test_ensemble_size_and_indices(self, matches):
        ensembles = fit_ensembles(matches, 4, {"P2M": "poisson"}, rng=0)

        assert set(ensembles) == {"A", "B", "C"}
        for ensemble in ensembles.values():
            assert len(ensemble) == 4
            assert [m.draw_index for m in ensemble] == [1, 2, 3, 4]
            assert all(m.frozen for m in ensemble)

    def test_attribute_order_follows_spec(self, matches):
        ensembles = fit_ensembles(matches, 1, {"WIN": "bernoulli", "P2M": "poisson"})

        assert list(ensembles["A"].draw(1)) == ["WIN", "P2M"]

    def test_reproducible(self, matches):
        a = fit_ensembles(matches, 3, "poisson", rng=5)
        b = fit_ensembles(matches, 3, "poisson", rng=5)

        assert [m["P2M"].mean() for m in a["A"]] == [m["P2M"].mean() for m in b["A"]]

    def test_parallel_matches_serial(self, matches):
        serial = fit_ensembles(matches, 3, {"P2M": "poisson"}, rng=5, max_workers=1)
        threaded = fit_ensembles(matches, 3, {"P2M": "poisson"}, rng=5, max_workers=4)

        for object_id in serial:
            assert [m["P2M"].mean() for m in serial[object_id]] == [
                m["P2M"].mean() for m in threaded[object_id]
            ]

    def test_unknown_object(self, matches):
        with pytest.raises(DataSufficiencyError) as info:
            fit_ensembles(matches, 1, "poisson", objects=["Z"])

        assert info.value.object_id == "Z"

    def test_absent_attribute(self, matches):
        with pytest.raises(SchemaError):
            fit_ensembles(matches, 1, {"P2M": "poisson", "P3M": "poisson"})

    def test_no_measurements_without_prior(self):
        matches = [make_match("A", "B", {"P2M": np.nan}, {"P2M": 3})]

        with pytest.raises(DataSufficiencyError) as info:
            fit_ensembles(matches, 1, "poisson")

        assert info.value.object_id == "A"
        assert info.value.attribute == "P2M"

    def test_no_measurements_with_prior(self):
        matches = [make_match("A", "B", {"P2M": np.nan}, {"P2M": 3})]
        priors = {"A": {"P2M": {"shape": 6, "rate": 2}}}

        ensembles = fit_ensembles(matches, 1, "poisson", priors=priors)

        assert ensembles["A"].draw(1)["P2M"].mean() == pytest.approx(3.0)

    def test_priors_per_object(self, matches):
        priors = {"A": {"P2M": {"shape": 10, "rate": 2}}}
        ensembles = fit_ensembles(matches, 1, {"P2M": "poisson"}, priors=priors)

        # (10 + 10) / (2 + 2)
        assert ensembles["A"].draw(1)["P2M"].mean() == pytest.approx(5.0)
        assert ensembles["B"].draw(1)["P2M"].mean() == pytest.approx(7.0)

    def test_improper_draws_tagged_with_object(self):
        matches = [make_match("A", "B", {"WIN": 1}, {"WIN": 0})]

        with pytest.raises(DataSufficiencyError) as info:
            fit_ensembles(matches, 3, "bernoulli")

        assert info.value.object_id == "A"
        assert info.value.attribute == "WIN"

    def test_exponential_time_weighting(self, matches):
        weighting = TimeWeighting(scheme="exponential", half_life=365.0)
        ensembles = fit_ensembles(matches, 1, {"P2M": "poisson"}, weighting=weighting)

        # A: 10 at t=0 (weight 0.5), 0 at t=365 (weight 1)
        assert ensembles["A"].draw(1)["P2M"].mean() == pytest.approx(5.0 / 1.5)

    def test_weighting_requires_time(self):
        matches = [make_match("A", "B", {"P2M": 1}, {"P2M": 3})]

        with pytest.raises(SchemaError, match="time"):
            fit_ensembles(matches, 1, "poisson", weighting="exponential")

    def test_dependent_model(self):
        rng = np.random.default_rng(0)
        matches = [
            make_match(
                "A", "B",
                {"X": rng.normal(), "Z": rng.normal()},
                {"X": rng.normal(), "Z": rng.normal()},
            )
            for _ in range(10)
        ]
        ensembles = fit_ensembles(matches, 2, {"dependent": True, "type": "mvn_inverse_wishart"}, rng=1)
        model = ensembles["A"].draw(2)

        assert list(model) == [("X", "Z")]
        assert model[("X", "Z")].mean().shape == (2,)

    def test_slots_restrict_participations(self, matches):
        ensembles = fit_ensembles(matches, 1, {"P2M": "poisson"}, slots=[1])

        assert set(ensembles) == {"A", "B", "C"}
        assert ensembles["A"].draw(1)["P2M"].mean() == pytest.approx(10.0)

    def test_normal_policy_forwarded(self, matches):
        ensembles = fit_ensembles(matches, 3, {"P2M": "normal"}, normal_draw_policy="duplicate")

        means = {m["P2M"].mean() for m in ensembles["B"]}
        assert means == {7.0}
        assert isinstance(ensembles["B"].draw(1)["P2M"], Normal)


class TestCustomFitting:
    """Test user-supplied fitting callables."""

    def test_custom_callable(self, matches):
        seen = {}

        def custom(table, num_draws):
            seen[len(seen)] = table
            rate = float(table["P2M"].mean())
            return [{"P2M": PoissonGamma(rate)} for _ in range(num_draws)]

        ensembles = fit_ensembles(matches, 2, custom)

        assert len(ensembles["A"]) == 2
        assert ensembles["A"].draw(2)["P2M"].mean() == pytest.approx(5.0)
        assert "TIME" in seen[0].columns

    def test_wrong_count(self, matches):
        def custom(table, num_draws):
            return [{"P2M": PoissonGamma(1.0)}]

        with pytest.raises(ValueError):
            fit_ensembles(matches, 3, custom)

    def test_failure_propagates_with_object(self, matches):
        def custom(table, num_draws):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom") as info:
            fit_ensembles(matches, 1, custom)

        assert info.value.object_id == "A"

    def test_fit_ensemble_single_object(self, matches):
        ensemble = fit_ensemble(matches, "C", 2, "poisson", rng=0)

        assert ensemble.object_id == "C"
        assert len(ensemble) == 2


class MedianFamily:
    """Custom family with only the minimal fit/sample signatures."""

    def __init__(self, value):
        self.value = value

    @classmethod
    def fit(cls, measurements, num_draws=1, prior=None):
        value = float(np.nanmedian(measurements))
        return [cls(value) for _ in range(num_draws)]

    def mean(self):
        return self.value

    def variance(self):
        return 0.0

    def sample(self, count=1):
        return np.full(count, self.value)


class TestCustomFamily:
    """Test user families that skip the optional keywords."""

    def test_fit_without_optional_keywords(self, matches):
        """Families need not accept weights or rng."""
        ensembles = fit_ensembles(matches, 2, {"P2M": MedianFamily}, rng=0)

        assert ensembles["A"].draw(2)["P2M"].mean() == pytest.approx(5.0)
        assert isinstance(ensembles["C"].draw(1)["P2M"], MedianFamily)

    def test_sample_without_rng(self):
        model = ObjectModel("A", {"P2M": MedianFamily(3.0)})

        assert model.sample(2, rng=0)["P2M"].tolist() == [3.0, 3.0]

    def test_weighting_needs_weights_keyword(self, matches):
        """Requested weighting is never dropped silently."""
        with pytest.raises(SchemaError, match="weights"):
            fit_ensembles(matches, 1, {"P2M": MedianFamily}, weighting="exponential")
