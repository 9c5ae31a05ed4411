"""Loading of monocular image sequences and tracking-time bookkeeping.

Three dataset layouts are supported:

* EuRoC: a times file with one nanosecond timestamp per line; each line
  also names the image ``<image_path>/<line>.png``.
* KITTI: ``<sequence>/times.txt`` with timestamps in seconds and images
  ``<sequence>/image_0/NNNNNN.png`` numbered from zero.
* TUM: an ``rgb.txt`` list with three header lines followed by
  ``timestamp filename`` lines; file names are relative to the sequence.
"""

from __future__ import annotations

import os
import re
import statistics
from dataclasses import dataclass
from typing import Iterator, Sequence

_NUMBER = re.compile(r"\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")
_TUM_HEADER_LINES = 3


def _leading_float(line: str) -> float:
    match = _NUMBER.match(line)
    if match is None:
        raise ValueError(f"line does not start with a timestamp: {line!r}")
    return float(match.group(1))


def _non_empty_lines(path: str | os.PathLike, skip: int = 0) -> Iterator[str]:
    with open(path, encoding="utf-8") as handle:
        lines = handle.read().splitlines()
    for line in lines[skip:]:
        if line:
            yield line


def load_euroc_mono(
    image_path: str, times_path: str | os.PathLike
) -> tuple[list[str], list[float]]:
    """Image files and timestamps (seconds) of an EuRoC camera folder."""
    files: list[str] = []
    timestamps: list[float] = []
    for line in _non_empty_lines(times_path):
        files.append(f"{image_path}/{line}.png")
        timestamps.append(_leading_float(line) / 1e9)
    return files, timestamps


def load_kitti_mono(sequence_path: str) -> tuple[list[str], list[float]]:
    """Left image files and timestamps of a KITTI odometry sequence."""
    timestamps = [
        _leading_float(line) for line in _non_empty_lines(f"{sequence_path}/times.txt")
    ]
    prefix = f"{sequence_path}/image_0/"
    files = [f"{prefix}{i:06d}.png" for i in range(len(timestamps))]
    return files, timestamps


def load_tum_mono(rgb_list_path: str | os.PathLike) -> tuple[list[str], list[float]]:
    """Image file names (relative to the sequence) and timestamps of a TUM list."""
    files: list[str] = []
    timestamps: list[float] = []
    for line in _non_empty_lines(rgb_list_path, skip=_TUM_HEADER_LINES):
        timestamps.append(_leading_float(line))
        fields = line.split()
        files.append(fields[1] if len(fields) > 1 else "")
    return files, timestamps


def frame_wait_time(timestamps: Sequence[float], index: int, track_time: float) -> float:
    """Seconds to wait after tracking frame ``index`` to keep the sequence's pace."""
    count = len(timestamps)
    if not 0 <= index < count:
        raise IndexError(f"frame index {index} out of range for {count} frames")
    period = 0.0
    if index < count - 1:
        period = timestamps[index + 1] - timestamps[index]
    elif index > 0:
        period = timestamps[index] - timestamps[index - 1]
    if track_time < period:
        return period - track_time
    return 0.0


@dataclass(frozen=True)
class TimingStats:
    """Summary of per-frame tracking times, in seconds."""

    count: int
    total: float
    median: float
    mean: float

    def report(self) -> str:
        """Text summary as printed after a run."""
        return f"median tracking time: {self.median}\nmean tracking time: {self.mean}"


def timing_stats(track_times: Sequence[float]) -> TimingStats:
    """Median (upper middle element) and mean of the tracking times."""
    if not track_times:
        raise ValueError("no tracking times to summarise")
    ordered = sorted(float(t) for t in track_times)
    total = float(sum(ordered))
    return TimingStats(
        count=len(ordered),
        total=total,
        median=ordered[len(ordered) // 2],
        mean=statistics.fmean(ordered),
    )