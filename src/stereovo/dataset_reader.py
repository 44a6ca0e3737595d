"""Stereo image sequence reader for EuRoC-style dataset folders.

Expected layout::

    mav0/
      cam0/data.csv          #timestamp [ns],filename
      cam0/data/<file>.png
      cam0/sensor.yaml       (optional, used by load_rig)
      cam1/data/<file>.png
      cam1/sensor.yaml
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, NamedTuple

import cv2
import numpy as np

from .errors import InputError
from .frontend.stereo_camera import StereoRig

logger = logging.getLogger(__name__)


class StereoPair(NamedTuple):
    """A synchronized pair of grayscale images."""

    left: np.ndarray
    right: np.ndarray
    timestamp_ns: int


class DatasetReader:
    """Iterates synchronized grayscale stereo pairs in timestamp order."""

    def __init__(
        self,
        dataset_path: str = "data/euroc/MH_01_easy/mav0",
        stride: int = 1,
    ) -> None:
        """Initialize reader with path to dataset.

        Args:
            dataset_path: Path to mav0 directory
            stride: Yield every stride-th pair

        Raises:
            FileNotFoundError: If dataset path or required directories don't exist
            ValueError: If data.csv is empty or invalid
        """
        if stride < 1:
            raise ValueError(f"stride must be positive, got {stride}")

        self.dataset_path = Path(dataset_path)
        self.cam0_path = self.dataset_path / "cam0"
        self.cam1_path = self.dataset_path / "cam1"

        self._validate_paths()

        entries = self._load_image_list(self.cam0_path / "data.csv")
        if not entries:
            raise ValueError(f"No images found in {self.cam0_path / 'data.csv'}")

        self._image_list = entries[::stride]
        self._current_idx = 0

        logger.debug(
            "Dataset %s: %d stereo pairs (stride %d)",
            self.dataset_path,
            len(self._image_list),
            stride,
        )

    def _validate_paths(self) -> None:
        if not self.dataset_path.exists():
            raise FileNotFoundError(f"Dataset path does not exist: {self.dataset_path}")

        cameras = (("cam0", self.cam0_path), ("cam1", self.cam1_path))
        for name, cam_path in cameras:
            if not cam_path.exists():
                raise FileNotFoundError(
                    f"{name} directory not found: {cam_path}\n"
                    f"Expected structure: {self.dataset_path}/{name}/"
                )

        for name, cam_path in cameras:
            if not (cam_path / "data").exists():
                raise FileNotFoundError(
                    f"{name}/data directory not found: {cam_path / 'data'}"
                )

        csv_path = self.cam0_path / "data.csv"
        if not csv_path.exists():
            raise FileNotFoundError(
                f"cam0/data.csv not found: {csv_path}\n"
                f"This file is required to list image timestamps and filenames."
            )

    @staticmethod
    def _load_image_list(csv_path: Path) -> list[tuple[int, str]]:
        """Parse a data.csv into (timestamp_ns, filename) sorted by time."""
        image_list = []

        with open(csv_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue

                parts = [part.strip() for part in line.split(",")]
                if len(parts) != 2 or not parts[0].isdigit() or not parts[1]:
                    raise ValueError(
                        f"Invalid line in {csv_path}: '{line}'\n"
                        f"Expected format: timestamp,filename"
                    )
                image_list.append((int(parts[0]), parts[1]))

        image_list.sort(key=lambda entry: entry[0])
        return image_list

    def load_rig(self) -> StereoRig:
        """Load the stereo calibration stored next to the images.

        Raises:
            FileNotFoundError: If either sensor.yaml is missing
        """
        return StereoRig.from_euroc(
            str(self.cam0_path / "sensor.yaml"),
            str(self.cam1_path / "sensor.yaml"),
        )

    def _read_gray(self, path: Path, side: str) -> np.ndarray:
        if not path.exists():
            raise FileNotFoundError(f"{side} camera image not found: {path}")

        image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise ValueError(f"Failed to load {side.lower()} image: {path}")
        return image

    def __getitem__(self, index: int) -> StereoPair:
        """Load the stereo pair at a position in the sequence.

        Raises:
            IndexError: If index is out of range
            FileNotFoundError: If either image file doesn't exist
            InputError: If the two images differ in size
        """
        timestamp_ns, filename = self._image_list[index]
        left = self._read_gray(self.cam0_path / "data" / filename, "Left")
        right = self._read_gray(self.cam1_path / "data" / filename, "Right")

        if left.shape != right.shape:
            raise InputError(
                f"Stereo pair {filename} has mismatched sizes "
                f"{left.shape} and {right.shape}"
            )

        return StereoPair(left=left, right=right, timestamp_ns=timestamp_ns)

    def get_next_stereo_pair(self) -> StereoPair | None:
        """Return the next stereo pair, or None once the sequence is exhausted."""
        if self._current_idx >= len(self._image_list):
            return None

        pair = self[self._current_idx]
        self._current_idx += 1
        return pair

    @property
    def timestamps(self) -> list[int]:
        return [timestamp for timestamp, _ in self._image_list]

    def reset(self) -> None:
        """Reset iterator to beginning of dataset."""
        self._current_idx = 0

    def __len__(self) -> int:
        """Return total number of stereo pairs in dataset."""
        return len(self._image_list)

    def __iter__(self) -> Iterator[StereoPair]:
        """Iterate from the first pair; restarting iteration resets the reader."""
        self.reset()
        return self

    def __next__(self) -> StereoPair:
        pair = self.get_next_stereo_pair()
        if pair is None:
            raise StopIteration
        return pair
