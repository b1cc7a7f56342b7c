"""
Pytest fixtures shared by the evmsim unit tests.
"""

import pytest

from evmsim.calldata_codec import CalldataCodec
from evmsim.selector_registry import SelectorRegistry
from evmsim.trace_parser import TraceParser

from trace_helpers import ERC20_ABI


@pytest.fixture
def registry():
    """Registry loaded with the ERC-20 test ABI."""
    return SelectorRegistry([ERC20_ABI], quiet_mode=True)


@pytest.fixture
def empty_registry():
    """Registry without any ABI, only the builtin errors."""
    return SelectorRegistry(quiet_mode=True)


@pytest.fixture
def codec(registry):
    return CalldataCodec(registry, quiet_mode=True)


@pytest.fixture
def parser(codec):
    return TraceParser(codec, quiet_mode=True)


@pytest.fixture
def bare_parser(empty_registry):
    """Parser that knows no function selectors."""
    return TraceParser(CalldataCodec(empty_registry, quiet_mode=True), quiet_mode=True)
