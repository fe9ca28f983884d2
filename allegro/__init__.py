"""Lock file parsing, a content-addressable package store, and vendor tree tooling for Composer projects."""

__version__ = "0.2.0"