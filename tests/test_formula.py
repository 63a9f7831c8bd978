"""
Tests for H0 / H1 model specification selection.

Covers every cell of the random structure × grouping mode table, the
single-probe variants, time forms and time covariates.
"""

import pandas as pd
import pytest

from tcgsa.config import ConfigurationError, TcGSAConfig
from tcgsa.stats.formula import (
    GroupingMode,
    RandomStructure,
    TimeFuncKind,
    build_model_specs,
    build_time_form,
)


def _formulas(config, design):
    specs = build_model_specs(config, design)
    return (
        specs.h0.multi.formula,
        specs.h1.multi.formula,
        specs.h0.single.formula,
        specs.h1.single.formula,
    )


class TestDecisionTable:
    """Every (RandomStructure, GroupingMode) cell yields a valid pair."""

    def test_separate_none(self, study):
        _, design = study
        h0, h1, h0_single, h1_single = _formulas(TcGSAConfig(), design)
        assert h0 == "expression ~ 1 + (1 | probe) + (1 | Patient_ID)"
        assert h1 == "expression ~ 1 + t1 + (1 | probe) + (0 + t1 | probe) + (1 | Patient_ID)"
        assert h0_single == "expression ~ 1 + (1 | Patient_ID)"
        assert h1_single == "expression ~ 1 + t1 + (1 | Patient_ID)"

    def test_separate_subjects(self, study):
        _, design = study
        h0, h1, _, h1_single = _formulas(TcGSAConfig(separate_subjects=True), design)
        assert h0 == "expression ~ 1 + (1 | probe) + (1 | Patient_ID)"
        assert h1 == (
            "expression ~ 1 + t1 + (1 | probe) + (0 + t1 | Patient_ID) + (1 | Patient_ID)"
        )
        assert h1_single == "expression ~ 1 + t1 + (0 + t1 | Patient_ID) + (1 | Patient_ID)"

    def test_separate_grouped(self, study):
        _, design = study
        h0, h1, h0_single, h1_single = _formulas(TcGSAConfig(group_name="Group"), design)
        assert h0 == (
            "expression ~ 1 + C(Group) + t1 + (1 | probe) + (0 + t1 | probe) + (1 | Patient_ID)"
        )
        assert h1 == (
            "expression ~ 1 + C(Group) + t1 + t1:C(Group) + (1 | probe) + (0 + t1 | probe) "
            "+ (0 + t1:C(Group) | probe) + (1 | Patient_ID)"
        )
        assert h0_single == "expression ~ 1 + C(Group) + t1 + (1 | Patient_ID)"
        assert h1_single == "expression ~ 1 + C(Group) + t1 + t1:C(Group) + (1 | Patient_ID)"

    def test_crossed_none(self, study):
        _, design = study
        h0, h1, h0_single, _ = _formulas(TcGSAConfig(crossed_random=True), design)
        assert h0 == "expression ~ 1 + probe + (1 | Patient_ID:probe)"
        assert h1 == "expression ~ 1 + probe + t1 + (0 + t1 | probe) + (1 | Patient_ID:probe)"
        assert h0_single == "expression ~ 1 + (1 | Patient_ID)"

    def test_crossed_separate_subjects(self, study):
        _, design = study
        _, h1, _, _ = _formulas(
            TcGSAConfig(crossed_random=True, separate_subjects=True), design
        )
        assert h1 == (
            "expression ~ 1 + probe + t1 + (0 + t1 | Patient_ID) + (1 | Patient_ID:probe)"
        )

    def test_crossed_grouped(self, study):
        _, design = study
        h0, h1, _, _ = _formulas(TcGSAConfig(crossed_random=True, group_name="Group"), design)
        assert h0 == (
            "expression ~ 1 + probe + C(Group) + t1 + (0 + t1 | probe) + (1 | Patient_ID:probe)"
        )
        assert h1 == (
            "expression ~ 1 + probe + C(Group) + t1 + t1:C(Group) + (0 + t1 | probe) "
            "+ (0 + t1:C(Group) | probe) + (1 | Patient_ID:probe)"
        )

    @pytest.mark.parametrize("crossed", [False, True])
    @pytest.mark.parametrize("kwargs", [{}, {"separate_subjects": True}, {"group_name": "Group"}])
    def test_every_cell_labelled_and_nested(self, study, crossed, kwargs):
        """H1 fixed and random effects always contain those of H0."""
        _, design = study
        config = TcGSAConfig(crossed_random=crossed, **kwargs)
        specs = build_model_specs(config, design)

        assert specs.structure is RandomStructure.from_config(config)
        assert specs.mode is GroupingMode.from_config(config)
        for variant in ("multi", "single"):
            h0 = getattr(specs.h0, variant)
            h1 = getattr(specs.h1, variant)
            assert set(h0.fixed) <= set(h1.fixed)
            assert set(h0.random) <= set(h1.random)
            assert len(h1.fixed) > len(h0.fixed)

    @pytest.mark.parametrize("crossed", [False, True])
    @pytest.mark.parametrize("kwargs", [{}, {"separate_subjects": True}, {"group_name": "Group"}])
    def test_single_variant_never_uses_probe(self, study, crossed, kwargs):
        _, design = study
        specs = build_model_specs(TcGSAConfig(crossed_random=crossed, **kwargs), design)
        assert not specs.h0.single.uses_probe
        assert not specs.h1.single.uses_probe
        assert specs.h1.multi.uses_probe

    def test_select_by_gene_count(self, study):
        _, design = study
        specs = build_model_specs(TcGSAConfig(), design)
        assert specs.select(1) == (specs.h0.single, specs.h1.single)
        assert specs.select(2) == (specs.h0.multi, specs.h1.multi)

    def test_deterministic(self, study):
        _, design = study
        config = TcGSAConfig(time_func="cubic", group_name="Group")
        assert build_model_specs(config, design) == build_model_specs(config, design)


class TestCovariates:

    def test_fixed_covariates_in_both_hypotheses(self, study):
        _, design = study
        specs = build_model_specs(TcGSAConfig(covariates_fixed=("Age",)), design)
        assert "Age" in specs.h0.multi.fixed
        assert "Age" in specs.h1.multi.fixed

    def test_time_covariates_only_under_h1(self, study):
        _, design = study
        specs = build_model_specs(
            TcGSAConfig(time_func="cubic", time_covariates=("Age",)), design
        )
        assert specs.h1.multi.fixed == ("t1", "t2", "t3", "t1:Age", "t2:Age", "t3:Age")
        assert specs.h0.multi.fixed == ()


class TestTimeForm:

    def test_linear(self, study):
        _, design = study
        form = build_time_form("linear", design, "TimePoint")
        assert form.kind is TimeFuncKind.LINEAR
        assert form.terms == ("t1",)
        assert form.time_df is None

    def test_cubic_slopes_per_term(self, study):
        _, design = study
        specs = build_model_specs(TcGSAConfig(time_func="cubic"), design)
        assert "(0 + t1 + t2 + t3 | probe)" in specs.h1.multi.formula

    def test_splines_time_df(self, study):
        """Four distinct times give one interior knot, two basis columns."""
        _, design = study
        form = build_time_form("splines", design, "TimePoint")
        assert form.kind is TimeFuncKind.SPLINES
        assert form.terms == ("spline_t1", "spline_t2")
        assert form.time_df == 2

    def test_design_column_is_discrete_time(self, study):
        _, design = study
        form = build_time_form("TP", design, "TimePoint")
        assert form.kind is TimeFuncKind.FACTOR
        assert form.terms == ("C(TP)",)
        assert form.design_variables == ("TP",)

    def test_expression_over_columns(self, study):
        _, design = study
        form = build_time_form("t1 + TimePoint*Age", design, "TimePoint")
        assert form.kind is TimeFuncKind.EXPRESSION
        assert form.terms == ("t1", "TimePoint*Age")
        assert form.design_variables == ("TimePoint", "Age")

    def test_compound_term_crossed_with_group(self, study):
        _, design = study
        config = TcGSAConfig(time_func="TimePoint*Age", group_name="Group")
        specs = build_model_specs(config, design)
        assert "(TimePoint*Age):C(Group)" in specs.h1.multi.fixed

    def test_unknown_expression(self, study):
        _, design = study
        with pytest.raises(ConfigurationError, match="unknown"):
            build_time_form("t1 + Weight", design, "TimePoint")

    def test_numeric_basis_needs_numeric_time(self):
        design = pd.DataFrame({"Patient_ID": ["P1", "P1"], "TimePoint": ["D0", "D1"]})
        with pytest.raises(ConfigurationError, match="numeric"):
            build_time_form("cubic", design, "TimePoint")

    def test_splines_need_two_distinct_times(self):
        design = pd.DataFrame({"Patient_ID": ["P1", "P2", "P3"], "TimePoint": [2.0, 2.0, 2.0]})
        with pytest.raises(ConfigurationError, match="two distinct values"):
            build_time_form("splines", design, "TimePoint")
