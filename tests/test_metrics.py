from __future__ import annotations

import numpy as np

from analysis.geometry import JointAngles, compute_joint_angles
from analysis.metrics import (
    MovementMetricsAggregator,
    depth_from_hip,
    stability_score,
    symmetry_score,
)


def _feed(agg: MovementMetricsAggregator, frame):
    angles = compute_joint_angles(frame)
    return agg.update(frame, angles)


def test_depth_mapping_and_clip():
    assert depth_from_hip(0.4, 0.4) == 0.0
    assert abs(depth_from_hip(0.6, 0.4) - 50.0) < 1e-9
    assert depth_from_hip(0.3, 0.4) == 0.0  # above baseline clips to 0
    assert depth_from_hip(2.0, 0.4) == 100.0
    assert abs(depth_from_hip(0.44, 0.4, gain=2.0, offset=5.0) - 25.0) < 1e-9


def test_symmetry_ignores_nan_pairs():
    angles = JointAngles(left_knee=100.0, right_knee=110.0)
    # hip pair is NaN and ignored
    assert abs(symmetry_score(angles, ("knee", "hip")) - 90.0) < 1e-9
    assert symmetry_score(JointAngles(), ("knee", "hip")) == 100.0
    wide = JointAngles(left_knee=0.0, right_knee=180.0, left_hip=0.0, right_hip=180.0)
    assert symmetry_score(wide, ("knee", "hip")) == 0.0


def test_stability_underflow_is_neutral():
    assert stability_score([]) == 100.0
    assert stability_score([42.0]) == 100.0
    assert stability_score([10.0, 10.0, 10.0]) == 100.0
    values = [0.0, 40.0]
    assert abs(stability_score(values) - (100.0 - np.std(values) * 2.0)) < 1e-9


def test_baseline_set_on_first_valid_frame(make_frame):
    agg = MovementMetricsAggregator()
    m0 = _feed(agg, make_frame(0, depth=0))
    assert agg.baseline_hip_y is not None
    assert m0.depth == 0.0 and m0.velocity == 0.0 and m0.stability == 100.0

    m1 = _feed(agg, make_frame(100, depth=20))
    assert abs(m1.depth - 20.0) < 1e-6
    assert abs(m1.velocity - 20.0) < 1e-6
    assert abs(m1.stability - (100.0 - np.std([0.0, 20.0]) * 2.0)) < 1e-6


def test_hidden_hips_leave_state_untouched(make_frame):
    agg = MovementMetricsAggregator()
    _feed(agg, make_frame(0, depth=0))
    before = len(agg.history)
    assert _feed(agg, make_frame(100, depth=30, low=("left_hip",))) is None
    assert len(agg.history) == before


def test_history_fifo_bound(make_frame):
    agg = MovementMetricsAggregator(history_size=5)
    depths = [0, 5, 10, 15, 20, 25, 30, 35]
    for i, d in enumerate(depths):
        _feed(agg, make_frame(i * 100, depth=d))
        assert len(agg.history) <= 5
    recent = agg.recent_depths()
    assert len(recent) == 5
    assert np.allclose(recent, depths[-5:], atol=1e-6)


def test_stability_window_includes_current(make_frame):
    agg = MovementMetricsAggregator(stability_window=3)
    for i, d in enumerate([0, 50, 50, 50]):
        m = _feed(agg, make_frame(i * 100, depth=d))
    # window = last 2 history depths + current, all 50
    assert abs(m.stability - 100.0) < 1e-6


def test_range_restarts_with_rep(make_frame):
    agg = MovementMetricsAggregator()
    for i, d in enumerate([0, 20, 40]):
        m = _feed(agg, make_frame(i * 100, depth=d))
    assert abs(m.range - 40.0) < 1e-6
    agg.mark_rep_start()
    m = _feed(agg, make_frame(300, depth=50))
    assert abs(m.range - 10.0) < 1e-6


def test_reset_clears_baseline(make_frame):
    agg = MovementMetricsAggregator()
    _feed(agg, make_frame(0, depth=0))
    agg.reset()
    assert agg.baseline_hip_y is None
    assert len(agg.history) == 0
