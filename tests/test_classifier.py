"""Tests for the threshold classifier: precedence and strict boundaries."""

import pytest

from apiguard.modules.classifier import AttackType, classify


class TestClassify:
    def test_clean_traffic(self):
        assert classify(3, 2, max_requests=10, scan_threshold=5) is None

    def test_thresholds_themselves_are_allowed(self):
        assert classify(10, 5, max_requests=10, scan_threshold=5) is None

    def test_one_over_request_limit(self):
        assert classify(11, 1, max_requests=10, scan_threshold=5) is AttackType.EXCESSIVE_REQUESTS

    def test_one_over_scan_threshold(self):
        assert classify(6, 6, max_requests=10, scan_threshold=5) is AttackType.PATH_SCANNING

    def test_rate_abuse_takes_precedence(self):
        assert classify(11, 11, max_requests=10, scan_threshold=5) is AttackType.EXCESSIVE_REQUESTS

    @pytest.mark.parametrize("attack, label", [
        (AttackType.EXCESSIVE_REQUESTS, "DDoS (Excessive Requests)"),
        (AttackType.PATH_SCANNING, "Path Scanning"),
    ])
    def test_labels(self, attack, label):
        assert attack.value == label
        assert str(attack) == label
        assert attack == label
