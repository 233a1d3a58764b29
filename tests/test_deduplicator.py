"""Tests for ingestly.services.deduplicator."""

import pytest

from ingestly.services.deduplicator import DedupTracker, normalize_image_url


class TestNormalizeImageUrl:
    @pytest.mark.parametrize(
        "variant",
        [
            "https://example.com/img/hero.jpg?v=3",
            "https://example.com/img/hero.jpg?w=800&h=600",
            "https://example.com/img/hero.jpg#top",
            "HTTPS://EXAMPLE.COM/img/hero.jpg",
        ],
    )
    def test_query_and_case_variants_share_a_key(self, variant):
        assert normalize_image_url(variant) == normalize_image_url("https://example.com/img/hero.jpg")

    def test_path_case_is_significant(self):
        assert normalize_image_url("https://example.com/A.jpg") != normalize_image_url(
            "https://example.com/a.jpg"
        )

    def test_different_hosts_differ(self):
        assert normalize_image_url("https://a.example.com/x.png") != normalize_image_url(
            "https://b.example.com/x.png"
        )

    def test_data_uri_is_its_own_key(self):
        uri = "data:image/png;base64," + "A" * 300
        assert normalize_image_url(uri) == uri


class TestDedupTracker:
    def test_add_reports_first_sighting_only(self):
        tracker = DedupTracker()
        assert tracker.add("https://example.com/a.jpg") is True
        assert tracker.add("https://example.com/a.jpg?v=2") is False
        assert tracker.add("https://example.com/b.jpg") is True
        assert len(tracker) == 2

    def test_contains_uses_normalised_key(self):
        tracker = DedupTracker()
        tracker.add("https://example.com/a.jpg?size=large")
        assert "https://EXAMPLE.com/a.jpg" in tracker
        assert "https://example.com/c.jpg" not in tracker
