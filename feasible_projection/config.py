"""Default option helpers for solver entry points."""

from __future__ import annotations

import copy

from .model import SolveOptions

_DEFAULT_OPTIONS = SolveOptions()


def get_default_options() -> SolveOptions:
    return copy.deepcopy(_DEFAULT_OPTIONS)


def set_default_options(options: SolveOptions) -> None:
    global _DEFAULT_OPTIONS
    _DEFAULT_OPTIONS = copy.deepcopy(options)
