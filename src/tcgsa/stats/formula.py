"""
Model specifications for the TcGSA likelihood ratio test.

For every gene set two nested linear mixed models are compared:

    H0: no time trend beyond what the null hypothesis allows
    H1: a time trend, possibly heterogeneous across genes or subjects

The pair is chosen from an explicit decision table crossing the random
effect structure with the grouping mode:

    RandomStructure   SEPARATE   (1 | probe) + (1 | subject)
                      CROSSED    probe fixed + (1 | subject:probe)

    GroupingMode      NONE               H1 adds time, random slopes by probe
                      SEPARATE_SUBJECTS  H1 adds time, random slopes by subject
                      GROUPED            H0 has group + time and slopes by probe,
                                         H1 adds time:group and its slopes by probe

Each hypothesis has a multi-probe variant and a single-probe variant. The
single-probe variant drops every term involving the probe, which cannot be
estimated from one gene.

Specifications are declarative values (fixed terms plus random effects);
rendering into a concrete fitting library's syntax is the job of the
mixed-model backend. ``ModelSpec.formula`` gives an lme4-style string for
display and logging.

Example:
    >>> from tcgsa.config import TcGSAConfig
    >>> specs = build_model_specs(TcGSAConfig(), design)
    >>> specs.h1.multi.formula
    'expression ~ 1 + t1 + (1 | probe) + (0 + t1 | probe) + (1 | Patient_ID)'
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

import pandas as pd

from tcgsa.config import ConfigurationError, TcGSAConfig
from tcgsa.stats.time_basis import LINEAR_COLUMNS, spline_columns, spline_knots

__all__ = [
    'RESPONSE',
    'PROBE',
    'RandomStructure',
    'GroupingMode',
    'TimeFuncKind',
    'TimeForm',
    'RandomEffect',
    'ModelSpec',
    'HypothesisSpec',
    'ModelSpecPair',
    'build_time_form',
    'build_model_specs',
]

RESPONSE = "expression"
PROBE = "probe"

_OPERATORS = re.compile(r"[+*/]")


class RandomStructure(Enum):
    """How subject and probe random effects are combined."""

    SEPARATE = "separate"
    CROSSED = "crossed"

    @classmethod
    def from_config(cls, config: TcGSAConfig) -> "RandomStructure":
        return cls.CROSSED if config.crossed_random else cls.SEPARATE


class GroupingMode(Enum):
    """Which heterogeneity of the time trend the test targets."""

    NONE = "none"
    SEPARATE_SUBJECTS = "separate_subjects"
    GROUPED = "grouped"

    @classmethod
    def from_config(cls, config: TcGSAConfig) -> "GroupingMode":
        # group + separate_subjects is rejected by TcGSAConfig
        if config.group_name is not None:
            return cls.GROUPED
        if config.separate_subjects:
            return cls.SEPARATE_SUBJECTS
        return cls.NONE


class TimeFuncKind(Enum):
    LINEAR = "linear"
    CUBIC = "cubic"
    SPLINES = "splines"
    FACTOR = "factor"
    EXPRESSION = "expression"


@dataclass(frozen=True)
class TimeForm:
    """Functional form of the time trend.

    Attributes:
        kind: Which form was selected.
        description: The ``time_func`` value this form was built from.
        terms: Additive components of the time trend, as model terms.
        design_variables: Design columns the time terms read, beyond the
            derived time-basis columns.
        time_df: Degrees of freedom of the spline basis (splines only).
    """

    kind: TimeFuncKind
    description: str
    terms: Tuple[str, ...]
    design_variables: Tuple[str, ...] = ()
    time_df: Optional[int] = None


def _wrap(term: str) -> str:
    """Parenthesize a compound term so it can be crossed with another."""
    return f"({term})" if _OPERATORS.search(term) else term


def _cross(terms: Tuple[str, ...], other: str) -> Tuple[str, ...]:
    return tuple(f"{_wrap(t)}:{other}" for t in terms)


def build_time_form(time_func: str, design: pd.DataFrame, time_name: str) -> TimeForm:
    """
    Resolve ``time_func`` into the terms of the time trend.

    Args:
        time_func: "linear", "cubic", "splines", a design column name
            (discrete time) or an expression over design columns using the
            ``+``, ``*`` and ``/`` operators.
        design: Design table of the study.
        time_name: Design column holding the time values.

    Returns:
        TimeForm describing the time terms.

    Raises:
        ConfigurationError: If a numeric basis is requested for a
            non-numeric time variable, splines are requested for a time
            variable with a single value, or an expression refers to unknown
            columns.
    """
    time_func = str(time_func).strip()
    basis_forms = {"linear", "cubic", "splines"}

    if time_func in basis_forms:
        if time_name not in design.columns:
            raise ConfigurationError(f"Time column {time_name!r} not found in design")
        if not pd.api.types.is_numeric_dtype(design[time_name]):
            raise ConfigurationError(
                f"time_func={time_func!r} requires a numeric time column, "
                f"{time_name!r} has dtype {design[time_name].dtype}"
            )

    if time_func == "linear":
        return TimeForm(TimeFuncKind.LINEAR, time_func, LINEAR_COLUMNS[:1])
    if time_func == "cubic":
        return TimeForm(TimeFuncKind.CUBIC, time_func, LINEAR_COLUMNS)
    if time_func == "splines":
        _, (lower, upper) = spline_knots(design[time_name])
        if not upper > lower:
            raise ConfigurationError(
                f"time_func='splines' needs at least two distinct values of {time_name!r}"
            )
        columns = tuple(spline_columns(design[time_name]))
        return TimeForm(TimeFuncKind.SPLINES, time_func, columns, time_df=len(columns))

    if time_func in design.columns:
        return TimeForm(
            TimeFuncKind.FACTOR, time_func, (f"C({time_func})",),
            design_variables=(time_func,),
        )

    # User expression: additive components, variables split on + * /
    terms = tuple(t.strip() for t in time_func.split("+") if t.strip())
    variables = [v.strip() for v in _OPERATORS.split(time_func) if v.strip()]
    derived = set(LINEAR_COLUMNS)
    if time_name in design.columns and pd.api.types.is_numeric_dtype(design[time_name]):
        derived.update(spline_columns(design[time_name]))
    unknown = [v for v in variables if v not in design.columns and v not in derived]
    if unknown or not terms:
        raise ConfigurationError(
            f"time_func {time_func!r} is neither 'linear', 'cubic', 'splines', "
            f"a design column nor an expression over design columns "
            f"(unknown names: {unknown})"
        )
    design_vars = tuple(dict.fromkeys(v for v in variables if v in design.columns))
    return TimeForm(TimeFuncKind.EXPRESSION, time_func, terms, design_variables=design_vars)


@dataclass(frozen=True)
class RandomEffect:
    """Random effects sharing one grouping factor.

    Attributes:
        terms: "1" for a random intercept, otherwise random slope terms.
        grouping: Grouping factor(s); several names mean their combination
            (e.g. ("Patient_ID", "probe") is one level per subject and gene).
    """

    terms: Tuple[str, ...]
    grouping: Tuple[str, ...]

    @property
    def is_intercept(self) -> bool:
        return self.terms == ("1",)

    @property
    def label(self) -> str:
        lhs = "1" if self.is_intercept else "0 + " + " + ".join(self.terms)
        return f"({lhs} | {':'.join(self.grouping)})"

    def involves(self, name: str) -> bool:
        return name in self.grouping


@dataclass(frozen=True)
class ModelSpec:
    """Declarative linear mixed model: response, fixed terms, random effects.

    The intercept is always part of the fixed effects.
    """

    response: str
    fixed: Tuple[str, ...]
    random: Tuple[RandomEffect, ...]

    @property
    def fixed_formula(self) -> str:
        """Fixed-effect part as a Wilkinson formula string."""
        return " + ".join((f"{self.response} ~ 1",) + self.fixed)

    @property
    def formula(self) -> str:
        """lme4-style rendering of the whole model, for display."""
        return " + ".join((self.fixed_formula,) + tuple(r.label for r in self.random))

    @property
    def uses_probe(self) -> bool:
        return PROBE in self.fixed or any(r.involves(PROBE) for r in self.random)


@dataclass(frozen=True)
class HypothesisSpec:
    """Multi-probe and single-probe variants of one hypothesis."""

    multi: ModelSpec
    single: ModelSpec

    def select(self, n_genes: int) -> ModelSpec:
        return self.single if n_genes == 1 else self.multi


@dataclass(frozen=True)
class ModelSpecPair:
    """Null and alternative model specifications of the TcGSA test."""

    h0: HypothesisSpec
    h1: HypothesisSpec
    structure: RandomStructure
    mode: GroupingMode
    time_form: TimeForm

    def select(self, n_genes: int) -> Tuple[ModelSpec, ModelSpec]:
        """(H0, H1) specs for a gene set retaining ``n_genes`` genes."""
        return self.h0.select(n_genes), self.h1.select(n_genes)

    @property
    def time_df(self) -> Optional[int]:
        return self.time_form.time_df


@dataclass(frozen=True)
class _Trend:
    """Grouping-mode dependent part of a (H0, H1) pair."""

    h0_fixed: Tuple[str, ...]
    h1_fixed: Tuple[str, ...]
    h0_slopes: Tuple[RandomEffect, ...]
    h1_slopes: Tuple[RandomEffect, ...]


@dataclass(frozen=True)
class _Terms:
    subject: str
    time: Tuple[str, ...]
    covariates: Tuple[str, ...]
    time_covariates: Tuple[str, ...]
    group: Optional[str]


def _probe_trend(t: _Terms) -> _Trend:
    """Time trend tested as a whole, heterogeneous across probes."""
    return _Trend(
        h0_fixed=t.covariates,
        h1_fixed=t.covariates + t.time + t.time_covariates,
        h0_slopes=(),
        h1_slopes=(RandomEffect(t.time, (PROBE,)),),
    )


def _subject_trend(t: _Terms) -> _Trend:
    """Time trend tested as a whole, heterogeneous across subjects."""
    return _Trend(
        h0_fixed=t.covariates,
        h1_fixed=t.covariates + t.time + t.time_covariates,
        h0_slopes=(),
        h1_slopes=(RandomEffect(t.time, (t.subject,)),),
    )


def _group_trend(t: _Terms) -> _Trend:
    """Only the group-dependent part of the time trend is tested."""
    group = f"C({t.group})"
    by_group = _cross(t.time, group)
    return _Trend(
        h0_fixed=(group,) + t.covariates + t.time + t.time_covariates,
        h1_fixed=(group,) + t.covariates + t.time + by_group + t.time_covariates,
        h0_slopes=(RandomEffect(t.time, (PROBE,)),),
        h1_slopes=(RandomEffect(t.time, (PROBE,)), RandomEffect(by_group, (PROBE,))),
    )


def _without_probe(slopes: Tuple[RandomEffect, ...]) -> Tuple[RandomEffect, ...]:
    return tuple(r for r in slopes if not r.involves(PROBE))


def _single(t: _Terms, fixed: Tuple[str, ...], slopes: Tuple[RandomEffect, ...]) -> ModelSpec:
    return ModelSpec(
        RESPONSE, fixed, _without_probe(slopes) + (RandomEffect(("1",), (t.subject,)),)
    )


def _separate_layout(t: _Terms, fixed: Tuple[str, ...], slopes: Tuple[RandomEffect, ...]) -> HypothesisSpec:
    """Independent random intercepts for probe and subject."""
    multi = ModelSpec(
        RESPONSE,
        fixed,
        (RandomEffect(("1",), (PROBE,)),) + slopes + (RandomEffect(("1",), (t.subject,)),),
    )
    return HypothesisSpec(multi=multi, single=_single(t, fixed, slopes))


def _crossed_layout(t: _Terms, fixed: Tuple[str, ...], slopes: Tuple[RandomEffect, ...]) -> HypothesisSpec:
    """Fixed probe effect, one random intercept per (subject, probe)."""
    multi = ModelSpec(
        RESPONSE,
        (PROBE,) + fixed,
        slopes + (RandomEffect(("1",), (t.subject, PROBE)),),
    )
    return HypothesisSpec(multi=multi, single=_single(t, fixed, slopes))


_TRENDS: Dict[GroupingMode, Callable[[_Terms], _Trend]] = {
    GroupingMode.NONE: _probe_trend,
    GroupingMode.SEPARATE_SUBJECTS: _subject_trend,
    GroupingMode.GROUPED: _group_trend,
}

_LAYOUTS: Dict[RandomStructure, Callable[..., HypothesisSpec]] = {
    RandomStructure.SEPARATE: _separate_layout,
    RandomStructure.CROSSED: _crossed_layout,
}


def build_model_specs(
    config: TcGSAConfig,
    design: pd.DataFrame,
    time_form: Optional[TimeForm] = None,
) -> ModelSpecPair:
    """
    Select the (H0, H1) model specifications for a configuration.

    Pure function of its inputs: identical configuration and design always
    yield an identical ModelSpecPair.

    Args:
        config: Analysis configuration.
        design: Design table (needed for the spline knots and to resolve
            user-supplied time forms).
        time_form: Pre-resolved time form; built from ``config.time_func``
            when omitted.

    Returns:
        ModelSpecPair with multi- and single-probe variants of H0 and H1.
    """
    if time_form is None:
        time_form = build_time_form(config.time_func, design, config.time_name)

    terms = _Terms(
        subject=config.subject_name,
        time=time_form.terms,
        covariates=config.covariates_fixed,
        time_covariates=tuple(
            term for cov in config.time_covariates for term in _cross(time_form.terms, cov)
        ),
        group=config.group_name,
    )

    structure = RandomStructure.from_config(config)
    mode = GroupingMode.from_config(config)
    trend = _TRENDS[mode](terms)
    layout = _LAYOUTS[structure]

    return ModelSpecPair(
        h0=layout(terms, trend.h0_fixed, trend.h0_slopes),
        h1=layout(terms, trend.h1_fixed, trend.h1_slopes),
        structure=structure,
        mode=mode,
        time_form=time_form,
    )
