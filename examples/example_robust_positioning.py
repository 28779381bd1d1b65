"""
Comparison of robust positioning methods on simulated Wi-Fi fingerprints.

Simulates located access points and fingerprints with ranging (RTT) and/or
RSSI readings, corrupts a fraction of the readings with outliers, and
estimates the position with RANSAC, LMedS, MSAC, PROSAC and PROMedS.

Can run with:
    - Default preset: python -m examples.example_robust_positioning
    - Named preset: python -m examples.example_robust_positioning --preset outliers
    - Single method in 3D: python -m examples.example_robust_positioning --method prosac --dim 3
    - Save summary: python -m examples.example_robust_positioning --output results.json

Quality scores are derived from the simulated reading errors as
1 / (1 + |error|), which is what an outlier model would provide in practice.

Author: Navigation Engineer
Date: 2024
"""

import argparse
import json
import time
import warnings
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
from tqdm import tqdm

from wifipos import (
    Fingerprint,
    PositioningError,
    RadioSource,
    Reading,
    RobustEstimatorMethod,
    create,
)
from wifipos.rf import received_power


# ============================================================================
# PRESET CONFIGURATIONS
# ============================================================================

PRESETS = {
    'baseline': {
        'description': 'Noiseless ranging readings, no outliers',
        'reading_type': 'ranging',
        'n_sources': 10,
        'extent': 50.0,
        'noise_std': 0.0,
        'outlier_ratio': 0.0,
        'outlier_std': 10.0,
    },
    'noisy': {
        'description': 'Ranging readings with 1 cm Gaussian noise',
        'reading_type': 'ranging',
        'n_sources': 10,
        'extent': 50.0,
        'noise_std': 1e-2,
        'outlier_ratio': 0.0,
        'outlier_std': 10.0,
    },
    'outliers': {
        'description': 'Ranging readings with 20% outliers',
        'reading_type': 'ranging',
        'n_sources': 15,
        'extent': 50.0,
        'noise_std': 1e-3,
        'outlier_ratio': 0.2,
        'outlier_std': 10.0,
    },
    'rssi': {
        'description': 'RSSI readings (dBm noise) with 20% outliers',
        'reading_type': 'rssi',
        'n_sources': 15,
        'extent': 50.0,
        'noise_std': 1e-3,
        'outlier_ratio': 0.2,
        'outlier_std': 10.0,
    },
    'mixed': {
        'description': 'Ranging + RSSI readings with 20% outliers',
        'reading_type': 'ranging_and_rssi',
        'n_sources': 15,
        'extent': 50.0,
        'noise_std': 1e-3,
        'outlier_ratio': 0.2,
        'outlier_std': 10.0,
    },
}

FREQUENCY = 2.4e9  # Hz
TRANSMITTED_POWER_RANGE = (-50.0, -30.0)  # dBm


# ============================================================================
# SCENARIO SIMULATION
# ============================================================================

def simulate_scenario(
    rng: np.random.Generator,
    dimension: int,
    reading_type: str,
    n_sources: int,
    extent: float,
    noise_std: float,
    outlier_ratio: float,
    outlier_std: float,
) -> Tuple[np.ndarray, List[RadioSource], Fingerprint, np.ndarray, np.ndarray]:
    """Simulate access points and one fingerprint.

    Args:
        rng: Random generator.
        dimension: 2 or 3.
        reading_type: 'ranging', 'rssi' or 'ranging_and_rssi'.
        n_sources: Number of access points.
        extent: Half-size of the square/cube where points are drawn (m).
        noise_std: Std of inlier noise (m for ranging, dB for RSSI).
        outlier_ratio: Fraction of readings corrupted with outliers.
        outlier_std: Std of outlier errors (m or dB).

    Returns:
        Tuple (true_position, sources, fingerprint, source_scores, reading_scores).
    """
    true_position = rng.uniform(-extent, extent, dimension)

    sources = []
    readings = []
    reading_scores = []
    for i in range(n_sources):
        position = rng.uniform(-extent, extent, dimension)
        tx_power = rng.uniform(*TRANSMITTED_POWER_RANGE)
        source = RadioSource(
            identifier=f"ap-{i:02d}",
            frequency=FREQUENCY,
            position=position,
            transmitted_power=tx_power,
        )
        sources.append(source)

        distance = float(np.linalg.norm(true_position - position))
        is_outlier = rng.random() < outlier_ratio
        if is_outlier:
            error = rng.normal(0.0, outlier_std)
        elif noise_std > 0:
            error = rng.normal(0.0, noise_std)
        else:
            error = 0.0

        if reading_type == 'ranging':
            reading = Reading.ranging(source, max(distance + error, 0.0))
        else:
            rssi = received_power(tx_power, distance, FREQUENCY) + error
            if reading_type == 'rssi':
                reading = Reading.rssi_only(source, rssi)
            else:
                reading = Reading.ranging_and_rssi(source, max(distance + error, 0.0), rssi)

        readings.append(reading)
        reading_scores.append(1.0 / (1.0 + abs(error)))

    source_scores = np.ones(n_sources)
    return true_position, sources, Fingerprint(readings), source_scores, np.array(reading_scores)


# ============================================================================
# EVALUATION
# ============================================================================

def evaluate_method(
    method: RobustEstimatorMethod,
    preset: Dict,
    dimension: int,
    n_trials: int,
    seed: int,
) -> Dict:
    """Run ``n_trials`` estimations with one method and collect error statistics."""
    rng = np.random.default_rng(seed)
    errors = []
    times = []
    failures = 0

    for _ in tqdm(range(n_trials), desc=f"  {method.name}", leave=False, unit="trial"):
        true_position, sources, fingerprint, source_scores, reading_scores = simulate_scenario(
            rng,
            dimension,
            preset['reading_type'],
            preset['n_sources'],
            preset['extent'],
            preset['noise_std'],
            preset['outlier_ratio'],
            preset['outlier_std'],
        )
        estimator = create(
            method,
            dimension=dimension,
            sources=sources,
            fingerprint=fingerprint,
            source_quality_scores=source_scores,
            fingerprint_reading_quality_scores=reading_scores,
            random_state=rng,
        )

        start = time.perf_counter()
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", RuntimeWarning)
                position = estimator.estimate()
        except PositioningError:
            failures += 1
            continue
        times.append(time.perf_counter() - start)
        errors.append(float(np.linalg.norm(position - true_position)))

    errors = np.array(errors)
    return {
        'method': method.name,
        'trials': n_trials,
        'failures': failures,
        'mean_error': float(np.mean(errors)) if len(errors) else float('nan'),
        'median_error': float(np.median(errors)) if len(errors) else float('nan'),
        'p90_error': float(np.percentile(errors, 90)) if len(errors) else float('nan'),
        'mean_time_ms': 1e3 * float(np.mean(times)) if times else float('nan'),
    }


def print_summary(results: List[Dict]) -> None:
    """Print a table of results."""
    print(f"\n{'Method':<10} {'Fail':>5} {'Mean [m]':>12} {'Median [m]':>12} "
          f"{'P90 [m]':>12} {'Time [ms]':>10}")
    print("-" * 66)
    for r in results:
        print(f"{r['method']:<10} {r['failures']:>5d} {r['mean_error']:>12.4g} "
              f"{r['median_error']:>12.4g} {r['p90_error']:>12.4g} {r['mean_time_ms']:>10.2f}")


def main():
    """Parse arguments and run the comparison."""
    parser = argparse.ArgumentParser(
        description="Compare robust positioning methods on simulated Wi-Fi fingerprints",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Available presets:\n" + "\n".join(
            f"  {name:<10} {cfg['description']}" for name, cfg in PRESETS.items()
        ),
    )
    parser.add_argument('--preset', choices=list(PRESETS), default='outliers',
                        help='Scenario preset (default: outliers)')
    parser.add_argument('--method', choices=[m.value for m in RobustEstimatorMethod] + ['all'],
                        default='all', help='Robust method to evaluate (default: all)')
    parser.add_argument('--dim', type=int, choices=[2, 3], default=2,
                        help='Position dimension (default: 2)')
    parser.add_argument('--trials', type=int, default=50,
                        help='Number of simulated fingerprints per method (default: 50)')
    parser.add_argument('--seed', type=int, default=42, help='Random seed (default: 42)')
    parser.add_argument('--output', type=str, default=None,
                        help='Optional JSON file for the summary')
    args = parser.parse_args()

    preset = PRESETS[args.preset]
    methods = (
        list(RobustEstimatorMethod) if args.method == 'all'
        else [RobustEstimatorMethod(args.method)]
    )

    print("=" * 70)
    print(f"Robust positioning comparison - preset '{args.preset}'")
    print(f"  {preset['description']}")
    print(f"  {args.dim}D, {preset['n_sources']} sources, {args.trials} trials")
    print("=" * 70)

    results = [
        evaluate_method(method, preset, args.dim, args.trials, args.seed)
        for method in methods
    ]
    print_summary(results)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump({'preset': args.preset, 'dimension': args.dim, 'results': results},
                      f, indent=2)
        print(f"\nSaved summary: {output_path}")


if __name__ == "__main__":
    main()
