"""Synthesis engine (Claude) and output parsing."""

from .client import SynthesisEngine, ClaudeSynthesisEngine, SynthesisUsage
from .parser import parse_json_output, strip_fences, expect_list, expect_object

__all__ = [
    "SynthesisEngine",
    "ClaudeSynthesisEngine",
    "SynthesisUsage",
    "parse_json_output",
    "strip_fences",
    "expect_list",
    "expect_object",
]
