"""
End-to-end bagging integration tests.

Tests that both resampling levels work together:
- Ensembles are fitted once and table i uses draw i only
- Trainer and predictor see the documented tables
- The prediction grid is complete, ordered and tagged with provenance
- Failures surface with the draw that caused them
"""

from typing import List

import numpy as np
import pandas as pd
import pytest

from bayesbag.bagging.engine import BayesianBagger, build
from bayesbag.bagging.prediction import (
    PredictionRecord,
    predict,
    predict_matches,
    prediction_grid,
    predictions_frame,
    summarize_predictions,
)
from bayesbag.data.models import Match, ParticipantSlot
from bayesbag.data.table import matches_from_frame
from bayesbag.errors import DataSufficiencyError, SchemaError


def make_match(a, b, a_p2m, b_p2m, y) -> Match:
    return Match(
        slots=(ParticipantSlot(a, {"P2M": a_p2m}), ParticipantSlot(b, {"P2M": b_p2m})),
        y=y,
    )


@pytest.fixture
def league() -> List[Match]:
    return [
        make_match("A", "B", 10, 8, 1),
        make_match("B", "C", 6, 4, 1),
        make_match("C", "A", 5, 9, 0),
        make_match("A", "C", 7, 7, 0),
        make_match("B", "A", 3, 11, 0),
    ]


def keep_table(table: pd.DataFrame) -> dict:
    """Trainer that remembers what it was trained on."""
    return {"table": table.copy()}


def rate_gap(model: dict, features: pd.DataFrame) -> float:
    return float(features["P2M_1_mean"].iloc[0] - features["P2M_2_mean"].iloc[0])


class TestBuild:
    """Test the first resampling level."""

    def test_single_match_point_estimate(self):
        """One match, one model: the table holds the observed values."""
        frame = pd.DataFrame({"ID_1": ["A"], "ID_2": ["B"], "P2M_1": [10], "P2M_2": [8], "y": [1]})
        bagged = build(matches_from_frame(frame), "poisson", 1, "means", keep_table)

        table = bagged.trained_models[0]["table"]
        assert list(table.columns) == ["P2M_1_mean", "P2M_2_mean", "y"]
        assert table.iloc[0].tolist() == pytest.approx([10.0, 8.0, 1.0])
        assert bagged.feature_columns == ["P2M_1_mean", "P2M_2_mean"]

    def test_one_table_per_draw(self, league):
        """N models from N tables of M rows each."""
        bagged = build(league, "poisson", 4, "means", keep_table, rng=0)

        assert bagged.num_models == 4
        for trained in bagged.trained_models:
            assert trained["table"].shape == (len(league), 3)
            assert trained["table"]["y"].tolist() == [1, 1, 0, 0, 0]
        assert all(len(e) == 4 for e in bagged.fitted_ensembles_per_object.values())

    def test_table_uses_matching_draw(self, league):
        """Row values of table i come from draw i of each ensemble."""
        bagged = build(league, "poisson", 3, "means", keep_table, rng=1)

        for i, trained in enumerate(bagged.trained_models, start=1):
            first_row = trained["table"].iloc[0]
            assert first_row["P2M_1_mean"] == pytest.approx(bagged.ensembles["A"].draw(i)["P2M"].mean())
            assert first_row["P2M_2_mean"] == pytest.approx(bagged.ensembles["B"].draw(i)["P2M"].mean())

    def test_reproducible(self, league):
        a = build(league, "poisson", 3, "sample", keep_table, rng=11)
        b = build(league, "poisson", 3, "sample", keep_table, rng=11)

        for x, y in zip(a.trained_models, b.trained_models):
            pd.testing.assert_frame_equal(x["table"], y["table"])

    def test_parallel_matches_serial(self, league):
        """Threaded training gives the same tables as serial training."""
        serial = build(league, "poisson", 4, "sample", keep_table, rng=7, max_workers=1)
        threaded = build(league, "poisson", 4, "sample", keep_table, rng=7, max_workers=4)

        for x, y in zip(serial.trained_models, threaded.trained_models):
            pd.testing.assert_frame_equal(x["table"], y["table"])

    def test_missing_outcome(self, league):
        league.append(Match.new("A", "B"))

        with pytest.raises(SchemaError, match="outcome"):
            build(league, "poisson", 2, "means", keep_table)

    def test_no_matches(self):
        with pytest.raises(SchemaError):
            build([], "poisson", 2, "means", keep_table)

    def test_invalid_num_models(self, league):
        with pytest.raises(ValueError):
            build(league, "poisson", 0, "means", keep_table)

    def test_trainer_failure_carries_draw_index(self, league):
        calls = []

        def flaky(table):
            calls.append(table)
            if len(calls) == 2:
                raise RuntimeError("singular design")
            return keep_table(table)

        with pytest.raises(RuntimeError, match="singular") as info:
            build(league, "poisson", 3, "means", flaky, rng=0, max_workers=1)

        assert info.value.draw_index == 2
        assert any("trainer" in note for note in info.value.__notes__)

    def test_custom_family_class(self, league):
        """A user family with minimal signatures runs through build and predict."""

        class MedianFamily:
            def __init__(self, value):
                self.value = value

            @classmethod
            def fit(cls, measurements, num_draws=1, prior=None):
                return [cls(float(np.nanmedian(measurements))) for _ in range(num_draws)]

            def mean(self):
                return self.value

            def variance(self):
                return 0.0

            def sample(self, count=1):
                return np.full(count, self.value)

        bagged = build(league, MedianFamily, 2, "sample", keep_table, rng=0)

        # A scored 10, 9, 7, 11; B scored 8, 6, 3
        first_row = bagged.trained_models[1]["table"].iloc[0]
        assert first_row["P2M_1_sample"] == pytest.approx(9.5)
        assert first_row["P2M_2_sample"] == pytest.approx(6.0)

        records = predict(bagged, Match.new("A", "B"), lambda model, features: 0.0, num_test_draws=2)
        assert len(records) == 4


class TestPredict:
    """Test the second resampling level."""

    @pytest.fixture
    def bagged(self, league):
        return build(league, "poisson", 2, "means", keep_table, rng=0)

    def test_single_match_single_draw(self):
        """The degenerate case predicts from the observed values."""
        history = [make_match("A", "B", 10, 8, 1)]
        bagged = build(history, "poisson", 1, "means", keep_table)

        records = predict(bagged, Match.new("A", "B"), rate_gap, num_test_draws=1)

        assert len(records) == 1
        assert records[0].predictions == pytest.approx(2.0)
        assert (records[0].idx_of_bagged_model, records[0].idx_of_test_set) == (1, 1)

    def test_full_grid_row_major(self, bagged):
        records = predict(bagged, Match.new("A", "C"), rate_gap, num_test_draws=3, rng=0)

        cells = [(r.idx_of_bagged_model, r.idx_of_test_set) for r in records]
        assert cells == [(1, 1), (1, 2), (1, 3), (2, 1), (2, 2), (2, 3)]

    def test_default_num_test_draws(self, bagged):
        """Without a configured value the grid is square."""
        records = predict(bagged, Match.new("A", "B"), rate_gap, rng=0)

        assert len(records) == bagged.num_models ** 2

    def test_predictor_sees_feature_row(self, bagged):
        """The predictor gets one row without the outcome column."""
        seen = []

        def spy(model, features):
            seen.append((model, features))
            return 0.0

        predict(bagged, Match.new("B", "A"), spy, num_test_draws=2, rng=0)

        for model, features in seen:
            assert features.shape == (1, 2)
            assert list(features.columns) == bagged.feature_columns
            assert "y" not in features.columns
        assert [m for m, _ in seen][:2] == [bagged.trained_models[0]] * 2

    def test_new_match_measurements_ignored(self, bagged):
        """Only historical measurements feed the test ensembles."""
        plain = Match.new("A", "B")
        noisy = Match(slots=(ParticipantSlot("A", {"P2M": 99}), ParticipantSlot("B", {"P2M": -5})))

        a = predict(bagged, plain, rate_gap, num_test_draws=2, rng=3, reuse_test_ensembles=False)
        b = predict(bagged, noisy, rate_gap, num_test_draws=2, rng=3, reuse_test_ensembles=False)

        assert [r.predictions for r in a] == [r.predictions for r in b]

    def test_unknown_participant(self, bagged):
        with pytest.raises(DataSufficiencyError) as info:
            predict(bagged, Match.new("A", "Z"), rate_gap, num_test_draws=2)

        assert info.value.object_id == "Z"

    def test_predictor_failure_carries_indices(self, bagged):
        def picky(model, features):
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input") as info:
            predict(bagged, Match.new("A", "B"), picky, num_test_draws=2, max_workers=1)

        assert info.value.bagged_model_index == 1
        assert info.value.test_set_index == 1

    def test_test_ensembles_cached(self, bagged):
        predict(bagged, Match.new("A", "B"), rate_gap, num_test_draws=2, reuse_test_ensembles=True)
        cached = bagged.test_ensembles[("A", 2)]

        predict(bagged, Match.new("C", "A"), rate_gap, num_test_draws=2, reuse_test_ensembles=True)

        assert bagged.test_ensembles[("A", 2)] is cached
        assert ("C", 2) in bagged.test_ensembles

    def test_no_cache_when_disabled(self, bagged):
        predict(bagged, Match.new("A", "B"), rate_gap, num_test_draws=2, reuse_test_ensembles=False)

        assert bagged.test_ensembles == {}

    def test_invalid_num_test_draws(self, bagged):
        with pytest.raises(ValueError):
            predict(bagged, Match.new("A", "B"), rate_gap, num_test_draws=0)

    def test_predict_matches(self, bagged):
        results = predict_matches(bagged, [Match.new("A", "B"), Match.new("B", "C")], rate_gap, num_test_draws=2, rng=0)

        assert [len(r) for r in results] == [4, 4]

    def test_predict_matches_skip_insufficient(self, bagged, caplog):
        """A match with an unknown participant is skipped, the rest predicted."""
        matches = [Match.new("A", "Z"), Match.new("A", "B")]

        with caplog.at_level("WARNING", logger="bayesbag"):
            results = predict_matches(bagged, matches, rate_gap, num_test_draws=2, rng=0, on_error="skip")

        assert results[0] is None
        assert len(results[1]) == 4
        assert any(getattr(r, "object_id", None) == "Z" for r in caplog.records)

    def test_predict_matches_raises_by_default(self, bagged):
        matches = [Match.new("A", "Z"), Match.new("A", "B")]

        with pytest.raises(DataSufficiencyError):
            predict_matches(bagged, matches, rate_gap, num_test_draws=2, rng=0)

    def test_predict_matches_invalid_on_error(self, bagged):
        with pytest.raises(ValueError, match="on_error"):
            predict_matches(bagged, [Match.new("A", "B")], rate_gap, num_test_draws=2, on_error="ignore")


class TestOutputHelpers:
    """Test prediction summaries."""

    @pytest.fixture
    def records(self):
        return [PredictionRecord(float(10 * j + k), j, k) for j in (1, 2) for k in (1, 2)]

    def test_frame(self, records):
        frame = predictions_frame(records)

        assert list(frame.columns) == ["predictions", "idx_of_bagged_model", "idx_of_test_set"]
        assert len(frame) == 4

    def test_grid(self, records):
        assert prediction_grid(records).tolist() == [[11.0, 12.0], [21.0, 22.0]]

    def test_summary(self, records):
        summary = summarize_predictions(records)

        assert summary["n_models"] == 2
        assert summary["n_test_draws"] == 2
        assert summary["mean"] == pytest.approx(16.5)
        assert summary["between_model_var"] == pytest.approx(25.0)
        assert summary["between_draw_var"] == pytest.approx(0.25)
        assert summary["ci"][0] < summary["median"] < summary["ci"][1]

    def test_incomplete_grid(self, records):
        with pytest.raises(ValueError):
            prediction_grid(records[:3])

    def test_duplicate_cell(self, records):
        records[3] = PredictionRecord(0.0, 1, 1)

        with pytest.raises(ValueError):
            prediction_grid(records)

    def test_duplicate_cell_with_nan_predictions(self):
        """NaN predictions do not hide a duplicated cell."""
        records = [
            PredictionRecord(float("nan"), 1, 1),
            PredictionRecord(float("nan"), 1, 1),
            PredictionRecord(1.0, 2, 1),
            PredictionRecord(1.0, 2, 2),
        ]

        with pytest.raises(ValueError, match="Duplicate"):
            prediction_grid(records)

    def test_nan_predictions_keep_their_cells(self):
        records = [PredictionRecord(float("nan"), 1, 1), PredictionRecord(3.0, 1, 2)]

        grid = prediction_grid(records)

        assert np.isnan(grid[0, 0])
        assert grid[0, 1] == 3.0

    def test_zero_index(self):
        records = [
            PredictionRecord(1.0, 1, 1),
            PredictionRecord(1.0, 1, 2),
            PredictionRecord(1.0, 0, 1),
            PredictionRecord(1.0, 2, 2),
        ]

        with pytest.raises(ValueError, match="1-based"):
            prediction_grid(records)

    def test_no_records(self):
        with pytest.raises(ValueError):
            prediction_grid([])

    def test_invalid_ci(self, records):
        with pytest.raises(ValueError):
            summarize_predictions(records, ci=1.0)


class TestBayesianBagger:
    """Test the configured engine facade."""

    def test_build_and_predict(self, league):
        bagger = BayesianBagger("poisson", num_models=2, transformation="means", rng=0)
        bagged = bagger.build(league, keep_table)

        records = bagger.predict(Match.new("A", "B"), rate_gap, num_test_draws=3)

        assert bagged is bagger.bagged
        assert len(records) == 6
        assert np.isfinite([r.predictions for r in records]).all()

    def test_predict_before_build(self):
        bagger = BayesianBagger("poisson", num_models=2)

        with pytest.raises(ValueError):
            bagger.predict(Match.new("A", "B"), rate_gap)
