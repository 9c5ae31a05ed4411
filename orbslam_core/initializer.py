"""Monocular map initialisation from two views.

A homography and a fundamental matrix are estimated in parallel RANSAC
loops over the same minimal sets; the better-scoring model is then
decomposed into a relative pose and the matches are triangulated.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from .twoview import (
    KeyPoint,
    check_rt,
    compute_f21,
    compute_h21,
    decompose_e,
    normalize,
)

_MIN_SET = 8
_TH_HOMOGRAPHY = 5.991
_TH_FUNDAMENTAL = 3.841
_TH_FUNDAMENTAL_SCORE = 5.991


@dataclass
class Reconstruction:
    """Relative pose of the second view and the triangulated points."""

    rotation: np.ndarray
    translation: np.ndarray
    points: list[np.ndarray] = field(default_factory=list)
    triangulated: list[bool] = field(default_factory=list)


def _homogeneous(points: np.ndarray) -> np.ndarray:
    return np.column_stack([points, np.ones(len(points))])


class Initializer:
    """Two-view initialiser anchored on a reference set of keypoints."""

    def __init__(
        self,
        reference_keys: Sequence[KeyPoint],
        K,
        sigma: float = 1.0,
        iterations: int = 200,
    ) -> None:
        self.K = np.array(K, dtype=np.float64)
        self.keys1: list[KeyPoint] = list(reference_keys)
        self.keys2: list[KeyPoint] = []
        self.sigma = float(sigma)
        self.sigma2 = self.sigma * self.sigma
        self.max_iterations = int(iterations)
        self.matches12: list[tuple[int, int]] = []
        self.matched1: list[bool] = []
        self.sets: list[list[int]] = []
        self._rng = random.Random(0)

    # ------------------------------------------------------------------ setup

    def _prepare(self, current_keys: Sequence[KeyPoint], matches12: Sequence[int]) -> None:
        self.keys2 = list(current_keys)
        self.matches12 = [(i, int(j)) for i, j in enumerate(matches12) if j >= 0]
        self.matched1 = [j >= 0 for j in matches12]
        if len(self.matches12) < _MIN_SET:
            raise ValueError(
                f"at least {_MIN_SET} matches are needed, got {len(self.matches12)}"
            )

        all_indices = list(range(len(self.matches12)))
        self.sets = []
        for _ in range(self.max_iterations):
            available = list(all_indices)
            chosen = []
            for _ in range(_MIN_SET):
                randi = self._rng.randint(0, len(available) - 1)
                chosen.append(available[randi])
                available[randi] = available[-1]
                available.pop()
            self.sets.append(chosen)

    def _matched_points(self) -> tuple[np.ndarray, np.ndarray]:
        p1 = np.array(
            [(self.keys1[i].x, self.keys1[i].y) for i, _ in self.matches12], dtype=np.float64
        ).reshape(-1, 2)
        p2 = np.array(
            [(self.keys2[j].x, self.keys2[j].y) for _, j in self.matches12], dtype=np.float64
        ).reshape(-1, 2)
        return p1, p2

    def _minimal_sets(self, pn1: np.ndarray, pn2: np.ndarray):
        for chosen in self.sets:
            first = [self.matches12[idx][0] for idx in chosen]
            second = [self.matches12[idx][1] for idx in chosen]
            yield pn1[first], pn2[second]

    # ------------------------------------------------------------- entry point

    def initialize(
        self, current_keys: Sequence[KeyPoint], matches12: Sequence[int]
    ) -> Reconstruction | None:
        """Estimate the pose of the current view relative to the reference.

        ``matches12[i]`` is the index in ``current_keys`` matched to reference
        keypoint ``i``, or a negative number if it has no match.  Returns
        ``None`` when no reliable reconstruction is found.
        """
        self._prepare(current_keys, matches12)

        inliers_h, score_h, h21 = self.find_homography()
        inliers_f, score_f, f21 = self.find_fundamental()

        total = score_h + score_f
        ratio = score_h / total if total > 0 else 0.0

        if ratio > 0.40:
            if h21 is None:
                return None
            return self.reconstruct_h(inliers_h, h21, self.K, 1.0, 50)
        if f21 is None:
            return None
        return self.reconstruct_f(inliers_f, f21, self.K, 1.0, 50)

    # ----------------------------------------------------------------- RANSAC

    def find_homography(self) -> tuple[list[bool], float, np.ndarray | None]:
        """RANSAC homography: (inliers, score, H21) of the best hypothesis."""
        pn1, t1 = normalize(self.keys1)
        pn2, t2 = normalize(self.keys2)
        t2inv = np.linalg.inv(t2)

        best_score = 0.0
        best_inliers = [False] * len(self.matches12)
        best_h: np.ndarray | None = None

        for set1, set2 in self._minimal_sets(pn1, pn2):
            h21 = t2inv @ compute_h21(set1, set2) @ t1
            try:
                h12 = np.linalg.inv(h21)
            except np.linalg.LinAlgError:
                continue
            score, inliers = self.check_homography(h21, h12, self.sigma)
            if score > best_score:
                best_score = score
                best_inliers = inliers
                best_h = h21.copy()

        return best_inliers, best_score, best_h

    def find_fundamental(self) -> tuple[list[bool], float, np.ndarray | None]:
        """RANSAC fundamental matrix: (inliers, score, F21) of the best hypothesis."""
        pn1, t1 = normalize(self.keys1)
        pn2, t2 = normalize(self.keys2)
        t2t = t2.T

        best_score = 0.0
        best_inliers = [False] * len(self.matches12)
        best_f: np.ndarray | None = None

        for set1, set2 in self._minimal_sets(pn1, pn2):
            f21 = t2t @ compute_f21(set1, set2) @ t1
            score, inliers = self.check_fundamental(f21, self.sigma)
            if score > best_score:
                best_score = score
                best_inliers = inliers
                best_f = f21.copy()

        return best_inliers, best_score, best_f

    # ---------------------------------------------------------------- scoring

    def check_homography(self, h21, h12, sigma: float) -> tuple[float, list[bool]]:
        """Symmetric transfer error score and inlier flags of a homography."""
        p1, p2 = self._matched_points()
        h21 = np.asarray(h21, dtype=np.float64)
        h12 = np.asarray(h12, dtype=np.float64)
        inv_sigma2 = 1.0 / (sigma * sigma)

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            x2in1 = _homogeneous(p2) @ h12.T
            p2in1 = x2in1[:, :2] * (1.0 / x2in1[:, 2:3])
            chi1 = np.sum((p1 - p2in1) ** 2, axis=1) * inv_sigma2

            x1in2 = _homogeneous(p1) @ h21.T
            p1in2 = x1in2[:, :2] * (1.0 / x1in2[:, 2:3])
            chi2 = np.sum((p2 - p1in2) ** 2, axis=1) * inv_sigma2

        in1 = ~(chi1 > _TH_HOMOGRAPHY)
        in2 = ~(chi2 > _TH_HOMOGRAPHY)
        score = float(
            np.sum(_TH_HOMOGRAPHY - chi1[in1]) + np.sum(_TH_HOMOGRAPHY - chi2[in2])
        )
        return score, [bool(b) for b in in1 & in2]

    def check_fundamental(self, f21, sigma: float) -> tuple[float, list[bool]]:
        """Symmetric epipolar distance score and inlier flags of a fundamental matrix."""
        p1, p2 = self._matched_points()
        f21 = np.asarray(f21, dtype=np.float64)
        inv_sigma2 = 1.0 / (sigma * sigma)
        x1 = _homogeneous(p1)
        x2 = _homogeneous(p2)

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            line2 = x1 @ f21.T
            num2 = np.sum(line2 * x2, axis=1)
            chi1 = num2 * num2 / (line2[:, 0] ** 2 + line2[:, 1] ** 2) * inv_sigma2

            line1 = x2 @ f21
            num1 = np.sum(line1 * x1, axis=1)
            chi2 = num1 * num1 / (line1[:, 0] ** 2 + line1[:, 1] ** 2) * inv_sigma2

        in1 = ~(chi1 > _TH_FUNDAMENTAL)
        in2 = ~(chi2 > _TH_FUNDAMENTAL)
        score = float(
            np.sum(_TH_FUNDAMENTAL_SCORE - chi1[in1])
            + np.sum(_TH_FUNDAMENTAL_SCORE - chi2[in2])
        )
        return score, [bool(b) for b in in1 & in2]

    # --------------------------------------------------------- reconstruction

    def reconstruct_f(
        self,
        inliers: Sequence[bool],
        f21,
        K,
        min_parallax: float,
        min_triangulated: int,
    ) -> Reconstruction | None:
        """Recover pose and structure from a fundamental matrix."""
        k = np.asarray(K, dtype=np.float64)
        n_inliers = sum(1 for flag in inliers if flag)

        e21 = k.T @ np.asarray(f21, dtype=np.float64) @ k
        r1, r2, t = decompose_e(e21)
        hypotheses = [(r1, t), (r2, t), (r1, -t), (r2, -t)]

        checks = [
            check_rt(r, tt, self.keys1, self.keys2, self.matches12, inliers, k, 4.0 * self.sigma2)
            for r, tt in hypotheses
        ]
        max_good = max(c.n_good for c in checks)
        n_min_good = max(int(0.9 * n_inliers), min_triangulated)
        n_similar = sum(1 for c in checks if c.n_good > 0.7 * max_good)

        if max_good < n_min_good or n_similar > 1:
            return None

        best = next(i for i, c in enumerate(checks) if c.n_good == max_good)
        chosen = checks[best]
        if chosen.parallax > min_parallax:
            rotation, translation = hypotheses[best]
            return Reconstruction(
                rotation=rotation.copy(),
                translation=translation.copy(),
                points=chosen.points,
                triangulated=chosen.good,
            )
        return None

    def reconstruct_h(
        self,
        inliers: Sequence[bool],
        h21,
        K,
        min_parallax: float,
        min_triangulated: int,
    ) -> Reconstruction | None:
        """Recover pose and structure from a homography (Faugeras decomposition)."""
        k = np.asarray(K, dtype=np.float64)
        n_inliers = sum(1 for flag in inliers if flag)

        a = np.linalg.inv(k) @ np.asarray(h21, dtype=np.float64) @ k
        u, w, vt = np.linalg.svd(a, full_matrices=True)
        s = np.linalg.det(u) * np.linalg.det(vt)
        d1, d2, d3 = (float(v) for v in w)

        with np.errstate(divide="ignore", invalid="ignore"):
            if d1 / d2 < 1.00001 or d2 / d3 < 1.00001:
                return None

        denom = d1 * d1 - d3 * d3
        aux1 = np.sqrt((d1 * d1 - d2 * d2) / denom)
        aux3 = np.sqrt((d2 * d2 - d3 * d3) / denom)
        x1 = (aux1, aux1, -aux1, -aux1)
        x3 = (aux3, -aux3, aux3, -aux3)
        root = np.sqrt((d1 * d1 - d2 * d2) * (d2 * d2 - d3 * d3))

        rotations: list[np.ndarray] = []
        translations: list[np.ndarray] = []

        # case d' = d2
        aux_stheta = root / ((d1 + d3) * d2)
        ctheta = (d2 * d2 + d1 * d3) / ((d1 + d3) * d2)
        stheta = (aux_stheta, -aux_stheta, -aux_stheta, aux_stheta)
        for i in range(4):
            rp = np.eye(3)
            rp[0, 0] = ctheta
            rp[0, 2] = -stheta[i]
            rp[2, 0] = stheta[i]
            rp[2, 2] = ctheta
            rotations.append(s * u @ rp @ vt)

            tp = np.array([x1[i], 0.0, -x3[i]]) * (d1 - d3)
            t = u @ tp
            translations.append(t / np.linalg.norm(t))

        # case d' = -d2
        aux_sphi = root / ((d1 - d3) * d2)
        cphi = (d1 * d3 - d2 * d2) / ((d1 - d3) * d2)
        sphi = (aux_sphi, -aux_sphi, -aux_sphi, aux_sphi)
        for i in range(4):
            rp = np.eye(3)
            rp[0, 0] = cphi
            rp[0, 2] = sphi[i]
            rp[1, 1] = -1.0
            rp[2, 0] = sphi[i]
            rp[2, 2] = -cphi
            rotations.append(s * u @ rp @ vt)

            tp = np.array([x1[i], 0.0, x3[i]]) * (d1 + d3)
            t = u @ tp
            translations.append(t / np.linalg.norm(t))

        best_good = 0
        second_best_good = 0
        best_index = -1
        best_parallax = -1.0
        best_check = None

        for i, (r, t) in enumerate(zip(rotations, translations)):
            check = check_rt(
                r, t, self.keys1, self.keys2, self.matches12, inliers, k, 4.0 * self.sigma2
            )
            if check.n_good > best_good:
                second_best_good = best_good
                best_good = check.n_good
                best_index = i
                best_parallax = check.parallax
                best_check = check
            elif check.n_good > second_best_good:
                second_best_good = check.n_good

        if (
            best_check is not None
            and second_best_good < 0.75 * best_good
            and best_parallax >= min_parallax
            and best_good > min_triangulated
            and best_good > 0.9 * n_inliers
        ):
            return Reconstruction(
                rotation=rotations[best_index].copy(),
                translation=translations[best_index].copy(),
                points=best_check.points,
                triangulated=best_check.good,
            )
        return None