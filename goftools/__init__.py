#!/usr/bin/env python

""" Goodness-of-fit tests for one dimensional models, along with toy studies of their behavior. """

__all__ = [
    "config",
    "functions",
    "gof",
    "histogram",
    "model",
    "toys",
    "utils",
    "yaml",
]

from .version import __version__  # noqa: F401
