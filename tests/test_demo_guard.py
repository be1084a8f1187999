"""Tests for the demo-data guard."""

from app.docgrid.config import DEFAULT_PLACEHOLDER_VALUES
from app.docgrid.services.demo_guard import DemoDataGuard


class TestDemoDataGuard:
    """Tests for DemoDataGuard.needs_extraction."""

    def test_missing_value_needs_extraction(self):
        guard = DemoDataGuard(["Acme Corp"])
        assert guard.needs_extraction(None) is True
        assert guard.needs_extraction({}) is True
        assert guard.needs_extraction({"value": "   ", "confidence": 0.9}) is True

    def test_placeholder_needs_extraction(self):
        """Test that a seeded placeholder is re-extracted without force."""
        guard = DemoDataGuard(["Acme Corp"])
        assert guard.needs_extraction({"value": "Acme Corp", "confidence": 0.9}) is True

    def test_real_value_skipped(self):
        guard = DemoDataGuard(["Acme Corp"])
        assert guard.needs_extraction({"value": "Northwind", "confidence": 0.9}) is False

    def test_force_always_extracts(self):
        """Test that an explicit request is never suppressed."""
        guard = DemoDataGuard(["Acme Corp"])
        assert guard.needs_extraction({"value": "Northwind", "confidence": 0.9}, force=True)

    def test_default_placeholders_from_settings(self):
        guard = DemoDataGuard()
        for literal in DEFAULT_PLACEHOLDER_VALUES:
            assert guard.is_placeholder(literal)
        assert "$1,250.00" in guard.placeholders
