from __future__ import annotations

import json
import logging

import numpy as np
import pandas as pd
import pytest

from icp_engine import nonlinear_icp
from icp_engine.errors import ICPInputError, InvarianceTestError
from icp_engine.subsets import enumerate_subsets


# --------------------------------------------------------------------------------------
# Input validation
# --------------------------------------------------------------------------------------

def test_single_environment_is_rejected_before_any_test(oracle, oracle_data):
    X, Y, _ = oracle_data(2)
    t = oracle([(0,)])
    with pytest.raises(ICPInputError, match="just one environment"):
        nonlinear_icp(X, Y, np.zeros(len(Y)), cond_ind_test=t)
    assert t.calls == []


def test_environment_length_mismatch(oracle, oracle_data):
    X, Y, E = oracle_data(2)
    t = oracle([])
    with pytest.raises(ICPInputError, match="same length as Y"):
        nonlinear_icp(X, Y, E[:-1], cond_ind_test=t)
    with pytest.raises(ICPInputError):
        nonlinear_icp(X[:-1], Y, E, cond_ind_test=t)
    assert t.calls == []


def test_alpha_must_be_a_probability(oracle, oracle_data):
    X, Y, E = oracle_data(2)
    with pytest.raises(ICPInputError):
        nonlinear_icp(X, Y, E, cond_ind_test=oracle([]), alpha=1.5)


def test_additional_set_indices_are_checked(oracle, oracle_data):
    X, Y, E = oracle_data(2)
    with pytest.raises(ICPInputError):
        nonlinear_icp(X, Y, E, cond_ind_test=oracle([]), test_additional_set=[0, 5])


# --------------------------------------------------------------------------------------
# Estimate and defining sets
# --------------------------------------------------------------------------------------

def test_empty_intersection_reports_empty_set_as_defining(oracle, oracle_data):
    X, Y, E = oracle_data(2)
    t = oracle([(), (0, 1)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t, alpha=0.05)
    assert res.retrieved_causal_vars == ()
    assert res.accepted_sets == [(), (0, 1)]
    assert res.rejected_sets == [(0,), (1,)]
    assert res.defining_sets == [()]
    assert t.tested == [(), (0,), (1,), (0, 1)]


def test_only_empty_set_accepted(oracle, oracle_data):
    X, Y, E = oracle_data(2)
    res = nonlinear_icp(X, Y, E, cond_ind_test=oracle([()]))
    assert res.retrieved_causal_vars == ()
    assert res.defining_sets == [()]


def test_nothing_accepted_gives_empty_estimate_without_defining_sets(oracle, oracle_data):
    X, Y, E = oracle_data(2)
    res = nonlinear_icp(X, Y, E, cond_ind_test=oracle([]))
    assert res.retrieved_causal_vars == ()
    assert res.accepted == []
    assert res.defining_sets is None
    assert res.n_tested == 4


def test_nonempty_intersection_is_the_estimate(oracle, oracle_data):
    X, Y, E = oracle_data(3)
    res = nonlinear_icp(X, Y, E, cond_ind_test=oracle([(0,), (0, 1)]))
    assert res.retrieved_causal_vars == (0,)
    assert res.defining_sets is None


def test_defining_sets_are_minimal_accepted_sets(oracle, oracle_data):
    X, Y, E = oracle_data(3)
    t = oracle([(2,), (0, 1), (0, 1, 2)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t)
    assert res.retrieved_causal_vars == ()
    assert res.defining_sets == [(2,), (0, 1)]
    # (0, 1, 2) contains an accepted set and is skipped
    assert (0, 1, 2) not in t.tested


def test_defining_sets_reported_even_when_search_stops_early(oracle, oracle_data):
    X, Y, E = oracle_data(3)
    t = oracle([(0,), (1, 2)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t, retrieve_defining_sets=False)
    assert res.stopped_early
    assert res.retrieved_causal_vars == ()
    assert res.defining_sets == [(0,), (1, 2)]


def test_accepted_additional_set_can_define_an_empty_estimate(oracle, oracle_data):
    X, Y, E = oracle_data(2)
    t = oracle([(1,)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t, max_size_sets=0, test_additional_set=[1])
    assert t.tested == [(), (1,)]
    assert res.accepted_sets == [(1,)]
    assert res.retrieved_causal_vars == ()
    assert res.defining_sets == [(1,)]


def test_multi_column_text_environment(oracle, oracle_data):
    X, Y, _ = oracle_data(2)
    E = pd.DataFrame({"a": ["ctrl", "trt"] * 20, "b": ["x"] * 40})
    res = nonlinear_icp(X, Y, E, cond_ind_test=oracle([(0,)]))
    assert res.retrieved_causal_vars == (0,)
    with pytest.raises(ICPInputError, match="just one environment"):
        nonlinear_icp(X, Y, pd.DataFrame({"a": ["ctrl"] * 40, "b": ["x"] * 40}), cond_ind_test=oracle([]))


# --------------------------------------------------------------------------------------
# Pruning and early termination
# --------------------------------------------------------------------------------------

def test_stops_once_intersection_is_empty_without_defining_sets(oracle, oracle_data):
    X, Y, E = oracle_data(3)
    t = oracle([(0,), (1,)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t, retrieve_defining_sets=False)
    assert t.tested == [(), (0,), (1,)]
    assert res.stopped_early
    assert res.retrieved_causal_vars == ()


def test_accepting_the_empty_set_first_stops_immediately(oracle, oracle_data):
    X, Y, E = oracle_data(3)
    t = oracle([(), (0,)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t, retrieve_defining_sets=False, stop_if_empty=True)
    assert t.tested == [()]
    assert res.stopped_early
    assert res.retrieved_causal_vars == ()


def test_supersets_of_intersection_are_skipped(oracle, oracle_data):
    X, Y, E = oracle_data(3)
    t = oracle([(0,), (0, 1), (0, 2), (0, 1, 2)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t, retrieve_defining_sets=False)
    assert t.tested == [(), (0,), (1,), (2,), (0, 1), (1, 2)]
    assert res.retrieved_causal_vars == (0,)
    assert res.n_pruned == 2
    assert res.n_sets == 8 and res.n_tested == 6


def test_stop_if_empty_false_tests_every_set(oracle, oracle_data):
    X, Y, E = oracle_data(3)
    t = oracle([(0,), (0, 1), (0, 2), (0, 1, 2)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t, retrieve_defining_sets=True, stop_if_empty=False)
    assert t.tested == enumerate_subsets(range(3))
    assert res.n_pruned == 0
    assert res.retrieved_causal_vars == (0,)


_ALL_SETS_P3 = enumerate_subsets(range(3))


@pytest.mark.parametrize("retrieve", [True, False])
@pytest.mark.parametrize("seed", range(25))
def test_pruning_never_changes_the_answer(oracle, oracle_data, seed, retrieve):
    rng = np.random.default_rng(seed)
    accept = [s for s in _ALL_SETS_P3 if rng.random() < 0.45]
    X, Y, E = oracle_data(3)
    pruned = nonlinear_icp(X, Y, E, cond_ind_test=oracle(accept),
                           retrieve_defining_sets=retrieve, stop_if_empty=True)
    full = nonlinear_icp(X, Y, E, cond_ind_test=oracle(accept),
                         retrieve_defining_sets=retrieve, stop_if_empty=False)
    assert pruned.retrieved_causal_vars == full.retrieved_causal_vars
    if retrieve:
        assert pruned.defining_sets == full.defining_sets
    assert pruned.n_tested <= full.n_tested


def test_every_accepted_set_contains_the_estimate(oracle, oracle_data):
    X, Y, E = oracle_data(4)
    accept = [(0, 2), (0, 1, 2), (0, 2, 3)]
    res = nonlinear_icp(X, Y, E, cond_ind_test=oracle(accept), stop_if_empty=False)
    for s in res.accepted_sets:
        assert set(res.retrieved_causal_vars) <= set(s)
    assert res.retrieved_causal_vars == (0, 2)


# --------------------------------------------------------------------------------------
# Additional set
# --------------------------------------------------------------------------------------

def test_already_tested_additional_set_is_not_retested(oracle, oracle_data):
    X, Y, E = oracle_data(2)
    t = oracle([(), (0, 1)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t, test_additional_set=[1, 0])
    assert len(t.calls) == 4
    assert not any(r.additional for r in res.accepted + res.rejected)


def test_additional_set_is_flagged_and_does_not_change_estimate(oracle, oracle_data):
    X, Y, E = oracle_data(3)
    t = oracle([(0,), (1, 2)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t, max_size_sets=1, test_additional_set=(2, 1))
    assert t.tested[-1] == (1, 2)
    assert res.retrieved_causal_vars == (0,)
    extra = [r for r in res.accepted if r.additional]
    assert [r.subset for r in extra] == [(1, 2)]
    assert res.settings.test_additional_set == (1, 2)


def test_rejected_additional_set_lands_in_rejected(oracle, oracle_data):
    X, Y, E = oracle_data(3)
    res = nonlinear_icp(X, Y, E, cond_ind_test=oracle([(0,)]), max_size_sets=1, test_additional_set=[0, 2])
    assert res.rejected[-1].subset == (0, 2)
    assert res.rejected[-1].additional


# --------------------------------------------------------------------------------------
# Tests passed as callables, failures, preselection
# --------------------------------------------------------------------------------------

def test_callable_returning_mapping_and_models_are_kept(oracle_data):
    X, Y, E = oracle_data(2)

    def always(Y, environment, X, alpha, verbose, tag="m"):
        return {"pvalue": 0.3, "decision": True, "model": tag}

    res = nonlinear_icp(X, Y, E, cond_ind_test=always, args_cond_ind_test={"tag": "fit"})
    assert res.accepted_sets == [(), (0,), (1,)]
    assert res.accepted_models == ["fit", "fit", "fit"]
    assert res.pvalues_accepted == [0.3, 0.3, 0.3]
    assert res.defining_sets == [()]
    assert res.settings.cond_ind_test_name == "always"


def test_accepted_models_come_from_the_test(oracle, oracle_data):
    X, Y, E = oracle_data(2)
    res = nonlinear_icp(X, Y, E, cond_ind_test=oracle([(0,), (0, 1)]))
    assert res.accepted_models == [("model", (0,)), ("model", (0, 1))]


def test_failing_test_aborts_the_search(oracle_data):
    X, Y, E = oracle_data(2)

    def flaky(Y, environment, X, alpha, verbose):
        if X.shape[1] == 2:
            raise ValueError("cannot fit")
        return (0.001, False)

    with pytest.raises(InvarianceTestError) as info:
        nonlinear_icp(X, Y, E, cond_ind_test=flaky)
    assert info.value.subset == (0, 1)


def test_non_callable_preselection_is_ignored_with_warning(oracle, oracle_data):
    X, Y, E = oracle_data(2)
    t = oracle([(0,)])
    with pytest.warns(UserWarning, match="needs to be a function"):
        res = nonlinear_icp(X, Y, E, cond_ind_test=t, var_preselection_func="lasso")
    assert res.n_sets == 4
    assert res.retrieved_causal_vars == (0,)


def test_preselection_restricts_universe_and_max_size(oracle, oracle_data):
    X, Y, E = oracle_data(4)
    seen = {}

    def keep_listed(X, Y, environment, verbose, keep=()):
        seen["shape"] = X.shape
        return list(keep)

    t = oracle([(3,), (1, 3)])
    res = nonlinear_icp(
        X, Y, E,
        cond_ind_test=t,
        var_preselection_func=keep_listed,
        args_var_preselection_func={"keep": [3, 1]},
    )
    assert seen["shape"] == X.shape
    assert t.tested == [(), (1,), (3,), (1, 3)]
    assert res.n_sets == 4
    assert res.settings.max_size_sets == 2
    assert res.retrieved_causal_vars == (3,)


def test_speed_up_runs_through_search(oracle, oracle_data):
    X, Y, E = oracle_data(2, n=100)
    t = oracle([(0,)])
    res = nonlinear_icp(X, Y, E, cond_ind_test=t, speed_up=True, subsample_size=(0.5, 1.0), alpha=0.1)
    assert res.retrieved_causal_vars == (0,)
    # rejected sets stop on the half sample, (0,) goes on to the full sample
    assert [c for c in t.calls if c[0] == (0,)] == [((0,), 50, 0.05), ((0,), 100, 0.1)]
    assert [c[1] for c in t.calls if c[0] == ()] == [50]
    assert res.settings.subsample_size == (0.5, 1.0)


# --------------------------------------------------------------------------------------
# Names, settings, logging, serialization
# --------------------------------------------------------------------------------------

def test_dataframe_columns_become_variable_names(oracle, oracle_data):
    X, Y, E = oracle_data(3)
    df = pd.DataFrame(X, columns=["a", "b", "c"])
    res = nonlinear_icp(df, pd.Series(Y), pd.Series(E), cond_ind_test=oracle([(1,), (1, 2)]))
    assert res.var_names == ["a", "b", "c"]
    assert res.retrieved_causal_names == ["b"]
    res2 = nonlinear_icp(df, Y, E, cond_ind_test=oracle([(1,)]), var_names=["x", "y", "z"])
    assert res2.retrieved_causal_names == ["y"]


def test_settings_echo_and_json(tmp_path, oracle, oracle_data):
    X, Y, E = oracle_data(2)
    res = nonlinear_icp(X, Y, E, cond_ind_test=oracle([(0,)]), alpha=0.1, seed=7,
                        cond_ind_test_names=["scripted"])
    s = res.settings
    assert s.alpha == 0.1 and s.seed == 7 and s.max_size_sets == 2
    assert s.cond_ind_test_names == ("scripted",)
    assert s.retrieve_defining_sets and s.stop_if_empty and not s.speed_up

    path = res.to_json(tmp_path / "out" / "res.json")
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["retrieved_causal_vars"] == [0]
    assert payload["settings"]["cond_ind_test"] == "oracle"
    assert payload["accepted"][0] == {"set": [0], "names": ["0"], "pvalue": 0.5, "additional": False}


def test_verbose_narrates_through_logger(caplog, oracle, oracle_data):
    X, Y, E = oracle_data(2)
    with caplog.at_level(logging.INFO, logger="icp"):
        nonlinear_icp(X, Y, E, cond_ind_test=oracle([(0,)]), verbose=True)
    messages = [r.getMessage() for r in caplog.records if r.name.startswith("icp.")]
    assert "Testing variables []" in messages
    assert any(m.startswith("Accepted set of variables [0]") for m in messages)
    assert "Retrieved set [0]" in messages


def test_quiet_run_emits_no_info_records(caplog, oracle, oracle_data):
    X, Y, E = oracle_data(2)
    with caplog.at_level(logging.INFO, logger="icp"):
        nonlinear_icp(X, Y, E, cond_ind_test=oracle([(0,)]))
    assert [r for r in caplog.records if r.name.startswith("icp.")] == []


def test_runs_are_reproducible_for_a_fixed_seed(oracle, oracle_data):
    X, Y, E = oracle_data(3, n=60)
    kw = dict(speed_up=True, seed=11)
    a, b = oracle([(0,), (0, 2)]), oracle([(0,), (0, 2)])
    ra = nonlinear_icp(X, Y, E, cond_ind_test=a, **kw)
    rb = nonlinear_icp(X, Y, E, cond_ind_test=b, **kw)
    assert a.calls == b.calls
    assert ra.to_dict() == rb.to_dict()


# --------------------------------------------------------------------------------------
# End to end with the built-in residual test
# --------------------------------------------------------------------------------------

def test_linear_residual_test_recovers_parent(sim_data):
    X, Y, E = sim_data
    res = nonlinear_icp(X, Y, E, cond_ind_test="residual_linear", alpha=0.01)
    # X1 is a child of Y shifted by the environment; it can never be in the estimate
    assert set(res.retrieved_causal_vars) <= {0}
    assert (1,) in res.rejected_sets
    assert () in res.rejected_sets
    assert res.settings.cond_ind_test_name == "residual_linear"


def test_forest_residual_test_runs_on_small_problem(sim_data):
    X, Y, E = sim_data
    rows = np.r_[0:150, 500:650]
    res = nonlinear_icp(
        X[rows, :2], Y[rows], E[rows],
        cond_ind_test="residual",
        args_cond_ind_test={"n_estimators": 30, "random_state": 0},
        max_size_sets=1,
    )
    assert res.n_sets == 3
    assert all(0.0 <= p <= 1.0 for p in res.pvalues_accepted + res.pvalues_rejected)
