"""Tests for AdaptiveEngine and runtime parameter selection."""

import pytest

from catkit.cat import AdaptiveEngine, QuizSettings, select_runtime_params
from catkit.cat.progress import AttemptProgress, ResponseOutcome
from catkit.cat.results import StopReason
from catkit.exceptions import (
    ConfigurationError,
    DataIntegrityError,
    SessionMismatchError,
)
from catkit.params import (
    ItemParameter,
    ItemParamList,
    ItemStatus,
    PersonParameter,
    PersonParamList,
)
from catkit.scales import ScaleHierarchy
from catkit.storage import InMemoryPlayHistory

CONTEXT = 1
EXAMINEE = 42
ATTEMPT = 7
TOKEN = "token-a"

HIERARCHY = ScaleHierarchy({1: None, 2: 1, 3: 1, 4: None})
ITEM_SCALES = {**{i: 2 for i in range(1, 6)}, **{i: 3 for i in range(6, 11)}, 11: 4}


@pytest.fixture
def stored_bank(parameter_store, item_bank):
    parameter_store.save_item_params(CONTEXT, item_bank)
    return item_bank


@pytest.fixture
def make_engine(stored_bank, parameter_store, attempt_store, cache, clock):
    def make(settings=None, item_scales=ITEM_SCALES, **kwargs):
        return AdaptiveEngine(
            CONTEXT,
            1,
            item_scales,
            parameter_store,
            attempt_store,
            cache,
            settings=settings or QuizSettings(),
            hierarchy=HIERARCHY,
            seed=0,
            clock=clock,
            **kwargs,
        )

    return make


def two_pl(item_id, status, difficulty=0.0, discrimination=1.5):
    return ItemParameter(
        item_id=item_id,
        model_name="2PL",
        params={"difficulty": difficulty, "discrimination": discrimination},
        status=status,
    )


class TestEngineSetup:
    """Tests for building the engine."""

    def test_items_outside_main_scale_are_ignored(self, make_engine):
        """Test that only items of the main scale's subtree are candidates."""
        engine = make_engine()

        assert 11 not in engine.item_scales
        assert sorted(engine.item_scales) == list(range(1, 11))

    def test_unknown_item_scale(self, make_engine):
        """Test that an item of an unknown scale is rejected."""
        with pytest.raises(DataIntegrityError, match="Scale 99 of item 1"):
            make_engine(item_scales={1: 99})

    def test_unknown_main_scale(self, parameter_store, attempt_store, cache):
        """Test that the main scale must be part of the hierarchy."""
        with pytest.raises(DataIntegrityError, match="Main scale 5"):
            AdaptiveEngine(
                CONTEXT, 5, {1: 2}, parameter_store, attempt_store, cache,
                hierarchy=HIERARCHY,
            )

    def test_flat_default_hierarchy(self, stored_bank, parameter_store, attempt_store, cache):
        """Test that without a hierarchy every scale is a root."""
        engine = AdaptiveEngine(
            CONTEXT, 1, {i: 1 for i in range(1, 6)}, parameter_store, attempt_store, cache
        )
        assert len(engine.item_scales) == 5
        assert len(engine.item_params) == 10

    def test_reload_item_params(self, make_engine, parameter_store, stored_bank):
        """Test that reloading picks up a new calibration."""
        engine = make_engine()
        assert engine.item_params[4].model_name == "1PL"

        parameter_store.save_item_params(
            CONTEXT, ItemParamList([two_pl(4, ItemStatus.SET_MANUALLY)])
        )
        assert engine.item_params[4].model_name == "1PL"
        engine.reload_item_params()
        assert engine.item_params[4].model_name == "2PL"

    def test_repr(self, make_engine):
        """Test __repr__ method."""
        assert repr(make_engine()) == "AdaptiveEngine(context_id=1, scale_id=1, n_items=10)"


class TestServeNextItem:
    """Tests for serving items of a single attempt."""

    def test_first_item_easiest(self, make_engine, attempt_store):
        """Test the first item and the stored progress."""
        engine = make_engine(QuizSettings(first_item_start="easiest"))
        outcome = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        assert outcome.item_id == 1
        assert outcome.reason == StopReason.OK
        assert not outcome.is_stop
        assert outcome.n_played == 1
        assert outcome.response_outcome == ResponseOutcome.NO_LAST_ITEM
        assert ATTEMPT in attempt_store

    def test_first_item_at_current_ability(self, make_engine):
        """Test that the first item is the most informative at ability 0."""
        outcome = make_engine().serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        assert outcome.item_id in (5, 6)
        assert outcome.ability == 0.0

    def test_stored_ability_is_the_start(self, make_engine, parameter_store):
        """Test that a stored ability on the main scale starts the attempt."""
        parameter_store.save_person_params(
            CONTEXT, PersonParamList([PersonParameter(EXAMINEE, 1.5, 1)])
        )
        outcome = make_engine().serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        assert outcome.ability == 1.5
        assert outcome.item_id == 9

    def test_stored_ability_is_clipped(self, make_engine, parameter_store):
        """Test that the start ability is clipped into the quiz bounds."""
        parameter_store.save_person_params(
            CONTEXT, PersonParamList([PersonParameter(EXAMINEE, 9.0, 1)])
        )
        outcome = make_engine().serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        assert outcome.ability == 5.0
        assert outcome.item_id == 10

    def test_stored_extreme_ability_is_ignored(self, make_engine, parameter_store):
        """Test that a sentinel ability starts at 0."""
        parameter_store.save_person_params(
            CONTEXT, PersonParamList([PersonParameter(EXAMINEE, 1000.0, 1)])
        )
        outcome = make_engine().serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        assert outcome.ability == 0.0

    def test_mean_ability_start(self, make_engine, parameter_store):
        """Test starting at the mean ability of the context."""
        parameter_store.save_person_params(
            CONTEXT, PersonParamList.from_dict({1: 1.0, 2: 2.0}, scale_id=1)
        )
        engine = make_engine(QuizSettings(first_item_start="mean_ability"))
        outcome = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        assert outcome.ability == 1.5
        assert outcome.item_id == 9

    def test_run_until_maximum_items(self, make_engine, parameter_store, attempt_store, cache):
        """Test a complete attempt from the first item to finishing it."""
        engine = make_engine(QuizSettings(max_items=3))
        answers = iter([1.0, 0.0, 1.0])

        outcome = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        served = []
        while not outcome.is_stop:
            served.append(outcome.item_id)
            outcome = engine.serve_next_item(
                EXAMINEE, ATTEMPT, TOKEN, recorded_responses={outcome.item_id: next(answers)}
            )

        assert len(set(served)) == 3
        assert outcome.reason == StopReason.REACHED_MAXIMUM_ITEMS
        assert outcome.reason.is_terminal
        assert outcome.response_outcome == ResponseOutcome.NEW_RESPONSE

        state = engine.finish_attempt(EXAMINEE, ATTEMPT, TOKEN)

        assert state.is_complete
        assert state.items_administered == served
        assert state.responses == [1.0, 0.0, 1.0]
        assert state.standard_error < float("inf")
        assert ATTEMPT not in attempt_store
        assert AttemptProgress.cache_key(EXAMINEE, ATTEMPT) not in cache
        stored = parameter_store.load_person_params(CONTEXT, scale_id=1)
        assert stored.get_ability(EXAMINEE) == pytest.approx(state.ability)
        assert EXAMINEE in parameter_store.load_person_params(
            CONTEXT, scale_id=3
        ).examinee_ids()

    def test_first_correct_answer_moves_to_upper_bound(self, make_engine):
        """Test that an all-correct record is clipped to the upper bound."""
        engine = make_engine(QuizSettings(first_item_start="easiest"))
        engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        outcome = engine.serve_next_item(
            EXAMINEE, ATTEMPT, TOKEN, recorded_responses={1: {"fraction": 1.0}}
        )

        assert outcome.ability == 5.0
        assert outcome.item_id == 10

    def test_reload_rolls_back(self, make_engine):
        """Test that a request without a response serves the item again."""
        engine = make_engine(QuizSettings(first_item_start="easiest"))
        engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        outcome = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        assert outcome.response_outcome == ResponseOutcome.ROLLED_BACK
        assert outcome.item_id == 1
        assert outcome.n_played == 1

    def test_abandoned_item_is_failed(self, make_engine):
        """Test that an abandoned item counts as a wrong answer."""
        engine = make_engine(QuizSettings(first_item_start="easiest"))
        engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        outcome = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN, abandoned=True)

        assert outcome.response_outcome == ResponseOutcome.ABANDONED
        assert outcome.ability == -5.0
        assert outcome.item_id == 2
        progress = engine.load_progress(EXAMINEE, ATTEMPT)
        assert progress.given_up_items == {1}

    def test_progress_survives_cache_loss(self, make_engine, cache):
        """Test that the store backs the cache."""
        engine = make_engine(QuizSettings(first_item_start="easiest"))
        engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        cache.clear()
        outcome = engine.serve_next_item(
            EXAMINEE, ATTEMPT, TOKEN, recorded_responses={1: 1.0}
        )

        assert outcome.response_outcome == ResponseOutcome.NEW_RESPONSE
        assert outcome.n_played == 2

    def test_session_mismatch(self, make_engine):
        """Test that a second session cannot take over the attempt."""
        engine = make_engine()
        engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        with pytest.raises(SessionMismatchError):
            engine.serve_next_item(EXAMINEE, ATTEMPT, "token-b")
        with pytest.raises(SessionMismatchError):
            engine.finish_attempt(EXAMINEE, ATTEMPT, "token-b")

    def test_attempt_of_another_examinee(self, make_engine):
        """Test that a stored attempt is bound to its examinee."""
        engine = make_engine()
        engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        with pytest.raises(DataIntegrityError, match="belongs to examinee 42"):
            engine.serve_next_item(43, ATTEMPT, TOKEN)

    def test_forced_break(self, make_engine, clock):
        """Test that a slow answer forces a break that ends on time."""
        settings = QuizSettings(
            first_item_start="easiest", max_time_per_item=10.0, break_duration=60.0
        )
        engine = make_engine(settings)
        engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        clock.advance(30.0)
        outcome = engine.serve_next_item(
            EXAMINEE, ATTEMPT, TOKEN, recorded_responses={1: 1.0}
        )
        assert outcome.reason == StopReason.FORCED_BREAK
        assert not outcome.reason.is_terminal

        clock.advance(30.0)
        outcome = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        assert outcome.reason == StopReason.FORCED_BREAK
        assert outcome.response_outcome == ResponseOutcome.ALREADY_RECORDED

        clock.advance(31.0)
        outcome = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        assert outcome.reason == StopReason.OK
        assert outcome.item_id == 10

    def test_maximum_attempt_time(self, make_engine, clock):
        """Test that an attempt running too long stops."""
        engine = make_engine(QuizSettings(max_attempt_time=100.0))
        first = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        clock.advance(101.0)
        outcome = engine.serve_next_item(
            EXAMINEE, ATTEMPT, TOKEN, recorded_responses={first.item_id: 1.0}
        )
        assert outcome.reason == StopReason.EXCEEDED_MAX_ATTEMPT_TIME

    def test_pilot_item(self, make_engine):
        """Test that an uncalibrated pilot item can be served."""
        engine = make_engine(
            QuizSettings(pilot_ratio=1.0),
            item_scales={**ITEM_SCALES, 12: 2},
            pilot_items=[12],
        )
        outcome = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)

        assert outcome.item_id == 12
        assert outcome.is_pilot

        outcome = engine.serve_next_item(
            EXAMINEE, ATTEMPT, TOKEN, recorded_responses={12: 1.0}
        )
        assert not outcome.is_pilot
        assert outcome.ability == 0.0

    def test_recently_played_items_are_penalized(self, make_engine):
        """Test that items of an earlier attempt are avoided for a while."""
        engine = make_engine(
            QuizSettings(penalty_time_range=1000.0, penalty_threshold=1000.0)
        )
        first = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        second = engine.serve_next_item(EXAMINEE, ATTEMPT + 1, TOKEN)
        other = engine.serve_next_item(43, ATTEMPT + 2, TOKEN)

        assert second.item_id != first.item_id
        assert other.item_id == first.item_id

    def test_play_history_is_shared(self, make_engine):
        """Test that a new engine on the same history keeps the penalty."""
        settings = QuizSettings(penalty_time_range=1000.0, penalty_threshold=1000.0)
        history = InMemoryPlayHistory()
        first = make_engine(settings, play_history=history).serve_next_item(
            EXAMINEE, ATTEMPT, TOKEN
        )
        second = make_engine(settings, play_history=history).serve_next_item(
            EXAMINEE, ATTEMPT + 1, TOKEN
        )

        assert second.item_id != first.item_id
        assert set(history.last_played(CONTEXT, EXAMINEE)) == {first.item_id, second.item_id}

    def test_balanced_strategy_spreads_exposure(self, make_engine):
        """Test that a second examinee avoids the item served to the first."""
        history = InMemoryPlayHistory()
        engine = make_engine(QuizSettings(strategy_id="balanced"), play_history=history)
        first = engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        other = engine.serve_next_item(43, ATTEMPT + 1, TOKEN)

        assert history.play_counts(CONTEXT) == {first.item_id: 1, other.item_id: 1}
        assert other.item_id != first.item_id


class TestFinishAttempt:
    """Tests for ending attempts."""

    def test_finish_without_items(self, make_engine, parameter_store):
        """Test finishing an attempt that never served an item."""
        state = make_engine().finish_attempt(EXAMINEE, ATTEMPT, TOKEN)

        assert state.n_items == 0
        assert state.standard_error == float("inf")
        assert len(parameter_store.load_person_params(CONTEXT, scale_id=1)) == 0

    def test_summary(self, make_engine):
        """Test the summary of a finished attempt."""
        engine = make_engine(QuizSettings(first_item_start="easiest"))
        engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN)
        engine.serve_next_item(EXAMINEE, ATTEMPT, TOKEN, recorded_responses={1: 0.0})
        state = engine.finish_attempt(EXAMINEE, ATTEMPT, TOKEN)

        assert state.n_items == 2
        assert "CAT" in state.summary()


class TestSelectRuntimeParams:
    """Tests for merging per-model parameters for runtime use."""

    def test_manual_beats_strategy(self, parameter_store, registry, stored_bank):
        """Test the status priority across models."""
        parameter_store.save_item_params(
            CONTEXT,
            ItemParamList(
                [
                    two_pl(3, ItemStatus.SET_MANUALLY),
                    two_pl(4, ItemStatus.SET_BY_STRATEGY),
                ]
            ),
        )
        selected = select_runtime_params(parameter_store, CONTEXT, registry)

        assert len(selected) == 10
        assert selected[3].model_name == "2PL"
        assert selected[4].model_name == "1PL"

    def test_unselected_items_are_skipped(self, parameter_store, registry):
        """Test that items without a selected model are not used."""
        parameter_store.save_item_params(
            CONTEXT,
            ItemParamList(
                [
                    two_pl(1, ItemStatus.SET_BY_STRATEGY),
                    two_pl(2, ItemStatus.NOT_SET),
                ]
            ),
        )
        selected = select_runtime_params(parameter_store, CONTEXT, registry)
        assert selected.item_ids() == [1]

    def test_model_override(self, parameter_store, registry, stored_bank):
        """Test that an override uses one model's calculated parameters."""
        parameter_store.save_item_params(
            CONTEXT,
            ItemParamList(
                [
                    two_pl(3, ItemStatus.NOT_SET),
                    two_pl(4, ItemStatus.NOT_CALCULATED),
                ]
            ),
        )
        selected = select_runtime_params(parameter_store, CONTEXT, registry, "2PL")
        assert selected.item_ids() == [3]

    def test_unknown_override(self, parameter_store, registry):
        """Test that an unknown override raises."""
        with pytest.raises(ConfigurationError, match="Unknown model override"):
            select_runtime_params(parameter_store, CONTEXT, registry, "NRM")
