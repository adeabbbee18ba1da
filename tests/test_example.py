"""Example test file to verify test setup works"""

import pytest
from card_statements import __version__
from card_statements.models.core import CATEGORY_ENUM_VERSION, Category


def test_version():
    """Test that version is defined"""
    assert __version__ == "0.1.0"


def test_category_enum_is_closed():
    """The wire contract has exactly twenty categories"""
    assert len(Category) == 20
    assert CATEGORY_ENUM_VERSION
