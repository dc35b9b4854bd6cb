"""Test that the project setup is working correctly."""

import trading_mirror


def test_version() -> None:
    """Test that version is defined."""
    assert trading_mirror.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from trading_mirror import providers
    from trading_mirror import storage
    from trading_mirror import sync
    from trading_mirror import valuation

    # Just verify imports work
    assert providers is not None
    assert storage is not None
    assert sync is not None
    assert valuation is not None
