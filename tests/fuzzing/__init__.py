"""Fuzz testing suite for justls."""

from .fuzz import Fuzzer, FuzzRunner, random_text, run_suite

__all__ = ["Fuzzer", "FuzzRunner", "random_text", "run_suite"]
