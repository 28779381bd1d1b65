"""
Unit tests for robust position estimators.

Tests the create() factory, input validation, readiness, estimation with
ranging, RSSI and mixed readings, outlier rejection and the locking
behaviour of estimators during listener callbacks.
"""

import numpy as np
import pytest

from wifipos import (
    Fingerprint,
    LockedError,
    NotReadyError,
    RadioSource,
    Reading,
    RobustEstimatorMethod,
    RobustPositionEstimator,
    RobustPositionEstimator2D,
    RobustPositionEstimator3D,
    RobustPositionEstimatorListener,
    create,
)
from wifipos.errors import RobustEstimatorError
from wifipos.lateration import DEFAULT_STOP_THRESHOLD, DEFAULT_THRESHOLD, required_iterations
from wifipos.rf import received_power

FREQUENCY = 2.4e9
ALL_METHODS = list(RobustEstimatorMethod)


class IterationCounter(RobustPositionEstimatorListener):
    """Counts robust iterations reported by an estimator."""

    def __init__(self):
        self.iterations = 0

    def on_estimate_next_iteration(self, estimator, iteration):
        self.iterations = iteration


def make_scenario(seed, dimension=2, n_sources=12, kind="ranging", n_outliers=0, noise=0.0):
    """Located sources and one fingerprint with exact (or corrupted) readings.

    ``noise`` is the standard deviation of Gaussian noise added to distances (m)
    and to RSSI values (dB).
    """
    rng = np.random.default_rng(seed)
    true_pos = rng.uniform(-10, 10, dimension)
    outliers = set(rng.choice(n_sources, size=n_outliers, replace=False).tolist())

    sources, readings, reading_scores = [], [], []
    for i in range(n_sources):
        tx_power = rng.uniform(-50, -30)
        source = RadioSource(
            f"ap{i}", FREQUENCY, position=rng.uniform(-40, 40, dimension),
            transmitted_power=tx_power,
        )
        sources.append(source)
        distance = float(np.linalg.norm(true_pos - source.position))
        error = 25.0 if i in outliers else 0.0

        reading_kind = kind
        if kind == "mixed":
            reading_kind = ["ranging", "rssi", "ranging_and_rssi"][i % 3]

        rssi = received_power(tx_power, distance + error, FREQUENCY)
        if noise > 0:
            error += rng.normal(0.0, noise)
            rssi += rng.normal(0.0, noise)
        if reading_kind == "ranging":
            readings.append(Reading.ranging(source, max(distance + error, 0.0)))
        elif reading_kind == "rssi":
            readings.append(Reading.rssi_only(source, rssi))
        else:
            readings.append(Reading.ranging_and_rssi(source, max(distance + error, 0.0), rssi))
        reading_scores.append(0.1 if i in outliers else 1.0)

    return true_pos, sources, Fingerprint(readings), np.ones(n_sources), np.array(reading_scores)


class TestFactory:
    """Test estimator creation."""

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_create_dispatches_dimension_and_method(self, method):
        est2 = create(method, dimension=2)
        est3 = create(method, dimension=3)

        assert isinstance(est2, RobustPositionEstimator2D)
        assert isinstance(est3, RobustPositionEstimator3D)
        assert est2.method is method
        assert est3.dimension == 3

    def test_default_method(self):
        assert create().method is RobustEstimatorMethod.PROMEDS

    def test_invalid_dimension(self):
        with pytest.raises(ValueError, match="dimension"):
            create(RobustEstimatorMethod.RANSAC, dimension=4)

    def test_classmethod_create(self):
        estimator = RobustPositionEstimator3D.create(RobustEstimatorMethod.MSAC)
        assert isinstance(estimator, RobustPositionEstimator3D)
        assert estimator.method is RobustEstimatorMethod.MSAC


class TestEstimatorDefaults:
    """Test default-constructed estimator state."""

    def test_defaults(self):
        estimator = RobustPositionEstimator2D()

        assert estimator.sources is None
        assert estimator.fingerprint is None
        assert estimator.source_quality_scores is None
        assert estimator.fingerprint_reading_quality_scores is None
        assert estimator.listener is None
        assert estimator.radio_source_position_covariance_used
        assert estimator.min_required_sources == 3
        assert estimator.positions is None
        assert estimator.distances is None
        assert estimator.estimated_position is None
        assert estimator.covariance is None
        assert estimator.inliers_data is None
        assert not estimator.is_locked
        assert not estimator.is_ready
        assert estimator.threshold == DEFAULT_STOP_THRESHOLD

    def test_threshold_default_per_method(self):
        assert create(RobustEstimatorMethod.RANSAC).threshold == DEFAULT_THRESHOLD
        assert create(RobustEstimatorMethod.LMEDS).threshold == DEFAULT_STOP_THRESHOLD

    def test_not_ready_estimate(self):
        with pytest.raises(NotReadyError):
            RobustPositionEstimator3D().estimate()


class TestEstimatorValidation:
    """Test that invalid inputs are rejected and previous values kept."""

    def setup_method(self):
        _, self.sources, self.fingerprint, _, _ = make_scenario(0)
        self.estimator = create(RobustEstimatorMethod.RANSAC, sources=self.sources)

    def test_too_few_sources(self):
        with pytest.raises(ValueError, match="At least 3"):
            self.estimator.sources = self.sources[:2]
        assert self.estimator.sources is self.sources

    def test_none_inputs(self):
        with pytest.raises(ValueError):
            self.estimator.sources = None
        with pytest.raises(ValueError):
            self.estimator.fingerprint = None
        with pytest.raises(ValueError):
            self.estimator.source_quality_scores = None
        assert self.estimator.sources is self.sources

    def test_wrong_types(self):
        with pytest.raises(TypeError):
            self.estimator.sources = ["ap0", "ap1", "ap2"]
        with pytest.raises(TypeError):
            self.estimator.fingerprint = [Reading.ranging(self.sources[0], 1.0)]

    def test_short_quality_scores(self):
        with pytest.raises(ValueError, match="at least 3"):
            self.estimator.fingerprint_reading_quality_scores = [1.0, 1.0]
        assert self.estimator.fingerprint_reading_quality_scores is None

    def test_delegated_options_validated(self):
        with pytest.raises(ValueError):
            self.estimator.confidence = 2.0
        with pytest.raises(ValueError):
            self.estimator.preliminary_subset_size = 1
        assert self.estimator.preliminary_subset_size == 3

        self.estimator.max_iterations = 10
        self.estimator.homogeneous_linear_solver_used = True
        assert self.estimator.max_iterations == 10
        assert self.estimator.homogeneous_linear_solver_used

    def test_fallback_standard_deviation(self):
        self.estimator.fingerprint = self.fingerprint
        self.estimator.fallback_distance_standard_deviation = 0.5
        np.testing.assert_array_equal(
            self.estimator.distance_standard_deviations, np.full(len(self.fingerprint), 0.5)
        )
        with pytest.raises(ValueError):
            self.estimator.fallback_distance_standard_deviation = 0.0


class TestEstimatorReadiness:
    """Test readiness rules."""

    def test_uniform_methods_need_sources_and_fingerprint(self):
        _, sources, fingerprint, _, _ = make_scenario(1)
        estimator = create(RobustEstimatorMethod.LMEDS, sources=sources)
        assert not estimator.is_ready

        estimator.fingerprint = fingerprint
        assert estimator.is_ready
        assert len(estimator.distances) == len(fingerprint)

    @pytest.mark.parametrize(
        "method", [RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS]
    )
    def test_progressive_methods_need_matching_scores(self, method):
        _, sources, fingerprint, source_scores, reading_scores = make_scenario(1)
        estimator = create(method, sources=sources, fingerprint=fingerprint)
        assert not estimator.is_ready

        estimator.source_quality_scores = source_scores
        assert not estimator.is_ready

        estimator.fingerprint_reading_quality_scores = reading_scores[:-1]
        assert not estimator.is_ready

        estimator.fingerprint_reading_quality_scores = reading_scores
        assert estimator.is_ready

    def test_too_few_usable_readings(self):
        _, sources, fingerprint, _, _ = make_scenario(1)
        short = Fingerprint(fingerprint.readings[:2])
        estimator = create(RobustEstimatorMethod.RANSAC, sources=sources, fingerprint=short)

        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()


class TestEstimation:
    """Test estimation results."""

    @pytest.mark.parametrize("method", ALL_METHODS)
    @pytest.mark.parametrize("kind", ["ranging", "rssi", "ranging_and_rssi", "mixed"])
    def test_noiseless_2d(self, method, kind):
        true_pos, sources, fingerprint, s_scores, r_scores = make_scenario(2, kind=kind)
        estimator = create(
            method,
            sources=sources,
            fingerprint=fingerprint,
            source_quality_scores=s_scores,
            fingerprint_reading_quality_scores=r_scores,
            random_state=0,
        )

        np.testing.assert_allclose(estimator.estimate(), true_pos, atol=1e-6)
        np.testing.assert_allclose(estimator.estimated_position, true_pos, atol=1e-6)
        assert estimator.covariance.shape == (2, 2)
        assert np.isfinite(estimator.accuracy().average_accuracy)

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_noiseless_3d(self, method):
        true_pos, sources, fingerprint, s_scores, r_scores = make_scenario(3, dimension=3)
        estimator = create(
            method,
            dimension=3,
            sources=sources,
            fingerprint=fingerprint,
            source_quality_scores=s_scores,
            fingerprint_reading_quality_scores=r_scores,
            random_state=0,
        )

        np.testing.assert_allclose(estimator.estimate(), true_pos, atol=1e-6)

    def test_ranging_and_rssi_doubles_hypotheses(self):
        _, sources, fingerprint, s_scores, r_scores = make_scenario(4, kind="ranging_and_rssi")
        estimator = create(
            RobustEstimatorMethod.PROSAC,
            sources=sources,
            fingerprint=fingerprint,
            source_quality_scores=s_scores,
            fingerprint_reading_quality_scores=r_scores,
        )

        assert len(estimator.distances) == 2 * len(fingerprint)
        np.testing.assert_allclose(estimator.quality_scores, 2.0)

    @pytest.mark.parametrize("method", ALL_METHODS)
    @pytest.mark.parametrize("dimension", [2, 3])
    @pytest.mark.parametrize("kind", ["ranging", "rssi"])
    def test_gaussian_noise(self, method, dimension, kind):
        """Test noisy readings without outliers."""
        for seed in range(3):
            true_pos, sources, fingerprint, s_scores, r_scores = make_scenario(
                seed, dimension=dimension, n_sources=15, kind=kind, noise=0.01
            )
            estimator = create(
                method,
                dimension=dimension,
                sources=sources,
                fingerprint=fingerprint,
                source_quality_scores=s_scores,
                fingerprint_reading_quality_scores=r_scores,
                random_state=seed,
            )
            if not method.is_median_based:
                estimator.threshold = 0.5

            position = estimator.estimate()

            assert np.linalg.norm(position - true_pos) < 0.5
            assert estimator.covariance.shape == (dimension, dimension)
            assert estimator.inliers_data is not None
            assert estimator.inliers_data.num_inliers >= estimator.min_required_sources

    @pytest.mark.parametrize("method", ALL_METHODS)
    @pytest.mark.parametrize("dimension", [2, 3])
    @pytest.mark.parametrize("kind", ["ranging", "rssi"])
    def test_outliers(self, method, dimension, kind):
        """Test that every seeded trial rejects 20% corrupted readings."""
        for seed in range(3):
            true_pos, sources, fingerprint, s_scores, r_scores = make_scenario(
                seed, dimension=dimension, n_sources=15, kind=kind, n_outliers=3, noise=1e-3
            )
            estimator = create(
                method,
                dimension=dimension,
                sources=sources,
                fingerprint=fingerprint,
                source_quality_scores=s_scores,
                fingerprint_reading_quality_scores=r_scores,
                random_state=seed,
            )
            if not method.is_median_based:
                estimator.threshold = 0.1

            position = estimator.estimate()

            assert np.linalg.norm(position - true_pos) < 0.5, f"seed {seed}"
            assert estimator.covariance is not None
            inliers = estimator.inliers_data
            assert inliers is not None
            assert inliers.num_inliers <= 12
            assert inliers.num_inliers >= estimator.min_required_sources
            if method.is_median_based:
                assert inliers.threshold >= estimator.threshold

    @pytest.mark.parametrize("dimension", [2, 3])
    def test_lmeds_iterates_until_confident(self, dimension):
        """Test that LMedS keeps sampling on contaminated data instead of stopping early."""
        for seed in range(5):
            true_pos, sources, fingerprint, _, _ = make_scenario(
                seed, dimension=dimension, n_sources=20, n_outliers=4, noise=0.01
            )
            counter = IterationCounter()
            estimator = create(
                RobustEstimatorMethod.LMEDS,
                dimension=dimension,
                sources=sources,
                fingerprint=fingerprint,
                listener=counter,
                random_state=seed,
            )

            position = estimator.estimate()

            assert np.linalg.norm(position - true_pos) < 0.5, f"seed {seed}"
            half = (len(estimator.distances) + 1) // 2
            assert counter.iterations >= required_iterations(
                half, len(estimator.distances), estimator.preliminary_subset_size,
                estimator.confidence,
            )
            assert counter.iterations > 1

    def test_unknown_sources_are_ignored(self):
        true_pos, sources, fingerprint, _, _ = make_scenario(5)
        stranger = RadioSource("stranger", FREQUENCY, position=np.zeros(2))
        readings = list(fingerprint.readings) + [Reading.ranging(stranger, 1000.0)]

        estimator = create(
            RobustEstimatorMethod.RANSAC,
            sources=sources,
            fingerprint=Fingerprint(readings),
            random_state=0,
        )

        assert len(estimator.distances) == len(fingerprint)
        np.testing.assert_allclose(estimator.estimate(), true_pos, atol=1e-6)


class TestEstimatorLocking:
    """Test listener events and rejection of reconfiguration while estimating."""

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_locked_during_callbacks(self, method):
        true_pos, sources, fingerprint, s_scores, r_scores = make_scenario(6, n_outliers=2)

        class Recorder(RobustPositionEstimatorListener):
            def __init__(self):
                self.starts = 0
                self.ends = 0
                self.iterations = 0
                self.lock_errors = 0
                self.attempts = 0

            def _try(self, action):
                self.attempts += 1
                try:
                    action()
                except LockedError:
                    self.lock_errors += 1

            def on_estimate_start(self, estimator):
                self.starts += 1
                assert estimator.is_locked
                self._try(lambda: setattr(estimator, "sources", sources))
                self._try(lambda: setattr(estimator, "fingerprint", fingerprint))
                self._try(lambda: setattr(estimator, "threshold", 1.0))
                self._try(lambda: setattr(estimator, "listener", None))

            def on_estimate_next_iteration(self, estimator, iteration):
                self.iterations += 1
                self._try(estimator.estimate)
                self._try(lambda: setattr(estimator, "source_quality_scores", s_scores))

            def on_estimate_end(self, estimator):
                self.ends += 1
                self._try(lambda: setattr(estimator, "fingerprint_reading_quality_scores", r_scores))
                self._try(lambda: setattr(estimator, "radio_source_position_covariance_used", False))

        recorder = Recorder()
        estimator = create(
            method,
            sources=sources,
            fingerprint=fingerprint,
            source_quality_scores=s_scores,
            fingerprint_reading_quality_scores=r_scores,
            listener=recorder,
            random_state=0,
        )
        estimator.estimate()

        assert recorder.starts == 1
        assert recorder.ends == 1
        assert recorder.iterations >= 1
        assert recorder.lock_errors == recorder.attempts
        assert estimator.listener is recorder
        assert estimator.radio_source_position_covariance_used
        assert not estimator.is_locked

    def test_progress_notifications(self):
        _, sources, fingerprint, _, _ = make_scenario(7, n_outliers=3)
        progress = []

        class Listener(RobustPositionEstimatorListener):
            def on_estimate_progress_change(self, estimator, value):
                progress.append(value)

        estimator = create(
            RobustEstimatorMethod.RANSAC,
            sources=sources,
            fingerprint=fingerprint,
            listener=Listener(),
            random_state=0,
        )
        estimator.progress_delta = 0.0
        estimator.estimate()

        assert progress
        assert progress == sorted(progress)
        assert all(0.0 < p <= 1.0 for p in progress)


class TestEstimatorResultReset:
    """Test that a failed estimate leaves no stale result behind."""

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_failed_estimate_clears_previous_result(self, method):
        true_pos, sources, fingerprint, s_scores, r_scores = make_scenario(8)
        estimator = create(
            method,
            sources=sources,
            fingerprint=fingerprint,
            source_quality_scores=s_scores,
            fingerprint_reading_quality_scores=r_scores,
            random_state=0,
        )
        np.testing.assert_allclose(estimator.estimate(), true_pos, atol=1e-6)
        assert estimator.inliers_data is not None

        # Same identifiers, now all on one line
        estimator.sources = [
            RadioSource(s.identifier, FREQUENCY, position=(2.0 * i, 0.0))
            for i, s in enumerate(sources)
        ]
        estimator.max_iterations = 50

        with pytest.raises(RobustEstimatorError):
            estimator.estimate()
        assert estimator.estimated_position is None
        assert estimator.inliers_data is None
        assert estimator.covariance is None
        assert not estimator.is_locked


class TestEstimatorInitialPosition:
    """Test the initial position forwarded to the robust solver."""

    def test_initial_position_delegated_and_validated(self):
        estimator = create(RobustEstimatorMethod.RANSAC, dimension=3)
        assert estimator.initial_position is None

        estimator.initial_position = [1.0, 2.0, 3.0]
        np.testing.assert_array_equal(estimator.initial_position, [1.0, 2.0, 3.0])
        with pytest.raises(ValueError, match="shape"):
            estimator.initial_position = [1.0, 2.0]
        np.testing.assert_array_equal(estimator.initial_position, [1.0, 2.0, 3.0])

    def test_estimate_without_linear_solver(self):
        true_pos, sources, fingerprint, _, _ = make_scenario(9, n_outliers=2)
        estimator = create(
            RobustEstimatorMethod.MSAC,
            sources=sources,
            fingerprint=fingerprint,
            random_state=0,
        )
        estimator.linear_solver_used = False
        estimator.initial_position = true_pos + 1.0

        np.testing.assert_allclose(estimator.estimate(), true_pos, atol=1e-6)

    def test_locked_during_estimate(self):
        _, sources, fingerprint, _, _ = make_scenario(10)
        errors = []

        class Listener(RobustPositionEstimatorListener):
            def on_estimate_start(self, estimator):
                try:
                    estimator.initial_position = np.zeros(2)
                except LockedError:
                    errors.append("initial_position")

        estimator = create(
            RobustEstimatorMethod.RANSAC,
            sources=sources,
            fingerprint=fingerprint,
            listener=Listener(),
            random_state=0,
        )
        estimator.estimate()

        assert errors == ["initial_position"]
        assert estimator.initial_position is None
