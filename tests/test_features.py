"""Tests for analytics/features.py — sliding-window feature extraction."""

from datetime import timedelta

import numpy as np
import pytest

from smartwake.analytics.features import (
    HeartRateFeatureExtractor,
    HeartRateFeatures,
    MotionFeatureExtractor,
    MotionFeatures,
)
from smartwake.models import HeartRateSample, MotionSample
from tests.conftest import T0, make_hr, make_motion


class TestMotionFeatures:
    def test_empty_gives_zero(self):
        assert MotionFeatureExtractor().extract([], T0) == MotionFeatures(0.0, 0, 0.0)

    def test_constant_gravity(self):
        samples = make_motion([1.0] * 100)
        f = MotionFeatureExtractor().extract(samples, T0)
        assert f.std == pytest.approx(0.0)
        assert f.peaks == 0
        assert f.energy == pytest.approx(100.0)

    def test_std_is_population(self):
        mags = [1.0, 2.0, 3.0, 4.0]
        f = MotionFeatureExtractor().extract(make_motion(mags), T0)
        assert f.std == pytest.approx(float(np.std(mags)))
        assert f.std == pytest.approx(np.sqrt(1.25))

    def test_peaks_strictly_above_threshold(self):
        f = MotionFeatureExtractor().extract(make_motion([1.0, 1.5, 1.6, 2.5]), T0)
        assert f.peaks == 2

    def test_custom_peak_threshold(self):
        ext = MotionFeatureExtractor(peak_threshold=1.0)
        assert ext.extract(make_motion([0.9, 1.1, 1.2]), T0).peaks == 2

    def test_energy_sum_of_squares(self):
        f = MotionFeatureExtractor().extract(make_motion([1.0, 2.0, 3.0]), T0)
        assert f.energy == pytest.approx(14.0)

    def test_samples_outside_window_ignored(self):
        old = MotionSample(timestamp=T0 - timedelta(seconds=61), magnitude=5.0)
        fresh = make_motion([1.0, 1.0])
        f = MotionFeatureExtractor().extract([old] + fresh, T0)
        assert f.peaks == 0
        assert f.energy == pytest.approx(2.0)

    def test_window_edge_inclusive(self):
        edge = MotionSample(timestamp=T0 - timedelta(seconds=60), magnitude=2.0)
        f = MotionFeatureExtractor().extract([edge], T0)
        assert f.peaks == 1

    def test_future_samples_ignored(self):
        future = MotionSample(timestamp=T0 + timedelta(seconds=1), magnitude=3.0)
        assert MotionFeatureExtractor().extract([future], T0) == MotionFeatures(0.0, 0, 0.0)

    def test_all_stale_gives_zero(self):
        samples = make_motion([2.0] * 10, end=T0 - timedelta(minutes=5))
        assert MotionFeatureExtractor().extract(samples, T0).energy == 0.0


class TestHeartRateFeatures:
    def test_empty_gives_zero(self):
        assert HeartRateFeatureExtractor().extract([], T0) == HeartRateFeatures(0.0, 0.0, 0.0)

    def test_mean_and_variance(self):
        bpms = [60.0, 62.0, 64.0, 66.0]
        f = HeartRateFeatureExtractor().extract(make_hr(bpms), T0)
        assert f.mean == pytest.approx(63.0)
        assert f.variance == pytest.approx(float(np.var(bpms)))

    def test_slope_recent_minus_older(self):
        # 24 samples over 115 s: last 7 (ages 0..30 s) at 75, older ones at 58.
        bpms = [58.0] * 17 + [75.0] * 7
        f = HeartRateFeatureExtractor().extract(make_hr(bpms), T0)
        assert f.slope == pytest.approx(17.0)

    def test_slope_negative_when_settling(self):
        bpms = [70.0] * 17 + [60.0] * 7
        f = HeartRateFeatureExtractor().extract(make_hr(bpms), T0)
        assert f.slope == pytest.approx(-10.0)

    def test_slope_zero_without_older_samples(self):
        f = HeartRateFeatureExtractor().extract(make_hr([60.0, 80.0]), T0)
        assert f.slope == 0.0
        assert f.mean == pytest.approx(70.0)

    def test_slope_zero_without_recent_samples(self):
        samples = make_hr([60.0, 70.0], end=T0 - timedelta(seconds=45))
        f = HeartRateFeatureExtractor().extract(samples, T0)
        assert f.slope == 0.0

    def test_samples_older_than_window_ignored(self):
        stale = HeartRateSample(timestamp=T0 - timedelta(seconds=121), bpm=200.0)
        f = HeartRateFeatureExtractor().extract([stale] + make_hr([60.0]), T0)
        assert f.mean == pytest.approx(60.0)
        assert f.variance == 0.0
