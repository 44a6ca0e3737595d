#!/usr/bin/env python3
"""Demo script for stereo visual odometry with timing diagnostics.

Usage:
    uv run python examples/vo_demo.py
"""

import logging

import numpy as np

from stereovo import DatasetReader, TrackingStatus, VisualOdometry, VOConfig


def main() -> None:
    """Run the visual odometry demo."""
    # Configuration
    dataset_path = "data/euroc/MH_01_easy/mav0"
    config_path = None  # Optional YAML overriding VOConfig defaults
    max_frames = None  # Set to int to limit frames

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    config = VOConfig.from_yaml(config_path) if config_path else VOConfig()

    print("Initializing visual odometry pipeline...")
    reader = DatasetReader(dataset_path)
    vo = VisualOdometry.from_dataset_path(dataset_path, config)

    print(f"Processing {len(reader)} frames...")
    print()

    print(
        f"{'Frame':>6} {'Status':^12} {'Track':>5} {'Corr':>5} {'Inlr':>5} {'RMS':>6} | "
        f"{'Stereo':>7} {'Track':>6} {'Motion':>7} {'Total':>7} | "
        f"{'Position'}"
    )
    print("-" * 110)

    lost_count = 0
    total_distance = 0.0
    prev_position = None
    timing_totals = {"stereo": 0.0, "tracking": 0.0, "motion": 0.0, "total": 0.0}

    for i, (left, right, timestamp_ns) in enumerate(reader):
        if max_frames is not None and i >= max_frames:
            break

        result = vo.process_frame(left, right, timestamp_ns)

        if result.tracking_status == TrackingStatus.LOST:
            lost_count += 1

        if prev_position is not None and result.is_tracking_ok:
            total_distance += float(np.linalg.norm(result.position - prev_position))
        prev_position = result.position.copy()

        t = result.timing
        timing_totals["stereo"] += t.stereo_ms
        timing_totals["tracking"] += t.tracking_ms
        timing_totals["motion"] += t.motion_ms
        timing_totals["total"] += t.total_ms

        if i % 20 == 0 or result.tracking_status == TrackingStatus.LOST:
            pos = result.position
            rms = result.motion.reprojection_error if result.motion else float("nan")
            print(
                f"{i:6d} {result.tracking_status.value:^12} "
                f"{result.num_temporal_matches:5d} {result.num_correspondences:5d} "
                f"{result.num_inliers:5d} {rms:6.2f} | "
                f"{t.stereo_ms:5.1f}ms {t.tracking_ms:4.1f}ms {t.motion_ms:5.1f}ms "
                f"{t.total_ms:5.1f}ms | "
                f"[{pos[0]:7.2f}, {pos[1]:7.2f}, {pos[2]:7.2f}]"
            )

    n_frames = max(vo.num_frames, 1)
    print()
    print("=" * 80)
    print("SUMMARY")
    print("=" * 80)
    print(f"Frames processed:  {vo.num_frames}")
    print(f"Lost count:        {lost_count} ({100 * lost_count / n_frames:.1f}%)")
    print(f"Distance traveled: {total_distance:.2f} m")
    print()
    print("Average timing per frame:")
    print(f"  Stereo:    {timing_totals['stereo'] / n_frames:6.1f} ms")
    print(f"  Tracking:  {timing_totals['tracking'] / n_frames:6.1f} ms")
    print(f"  Motion:    {timing_totals['motion'] / n_frames:6.1f} ms")
    print(f"  Total:     {timing_totals['total'] / n_frames:6.1f} ms")

    if vo.current_pose is not None:
        pos = vo.current_pose.position
        print()
        print(f"Final position: [{pos[0]:.2f}, {pos[1]:.2f}, {pos[2]:.2f}]")
        rotation = vo.current_pose.rotation_angle_to(vo.get_trajectory()[0])
        print(f"Final rotation: {np.degrees(rotation):.1f} deg from start")


if __name__ == "__main__":
    main()
