#!/usr/bin/env python3
"""Demo script for the stereo frontend.

Processes the EuRoC dataset through corner detection, left-right
matching and triangulation, and prints per-frame statistics.

Usage:
    uv run python examples/stereo_demo.py

Requirements:
    - EuRoC dataset downloaded to data/euroc/MH_01_easy/mav0/
"""

import logging

import numpy as np

from stereovo import DatasetReader, InsufficientDataError, StereoFrontend


def main() -> None:
    """Run the stereo frontend demo."""
    # Configuration
    dataset_path = "data/euroc/MH_01_easy/mav0"
    max_frames = None  # Set to int to limit frames, None for all

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("Initializing stereo frontend...")
    reader = DatasetReader(dataset_path)
    frontend = StereoFrontend(reader.load_rig())

    print(f"Stereo baseline: {frontend.baseline:.4f} m")
    print(f"Processing {len(reader)} frames...")
    print()

    for i, (left, right, timestamp_ns) in enumerate(reader):
        if max_frames is not None and i >= max_frames:
            break

        try:
            frame = frontend.process_frame(left, right, timestamp_ns)
        except InsufficientDataError as exc:
            print(f"Frame {i:4d}: skipped ({exc})")
            continue

        if i % 50 == 0:
            depth = np.median(frame.points_3d[:, 2]) if frame.num_3d_points else float("nan")
            print(
                f"Frame {i:4d}: "
                f"{frame.num_features_left:4d}/{frame.num_features_right:4d} corners, "
                f"{frame.num_matches:3d} matches, "
                f"{frame.num_degenerate:2d} degenerate, "
                f"median depth {depth:.2f} m"
            )

    print()
    print("Done!")


if __name__ == "__main__":
    main()
