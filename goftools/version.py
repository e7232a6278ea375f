#!/usr/bin/env python3

""" goftools version information. """

__version__ = "0.1.0"
