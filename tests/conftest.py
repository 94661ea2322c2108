import numpy as np
import pytest

from pytubegen.planar import PlanarMesh


def make_strip(segments: int = 6, width: float = 20.0, step: float = 10.0, tip: float = 10.0) -> PlanarMesh:
    """Straight band along x: one pipe closed by a cap at each end."""
    k = segments
    xs = np.arange(k + 1) * step
    top = np.column_stack([xs, np.full(k + 1, 0.5 * width)])
    bot = np.column_stack([xs, np.full(k + 1, -0.5 * width)])
    tips = np.array([[-tip, 0.0], [xs[-1] + tip, 0.0]])
    V = np.vstack([top, bot, tips])
    t = lambda i: i
    b = lambda i: k + 1 + i
    left, right = 2 * k + 2, 2 * k + 3
    F = []
    for i in range(k):
        F.append((b(i), b(i + 1), t(i + 1)))
        F.append((b(i), t(i + 1), t(i)))
    F.append((b(0), t(0), left))
    F.append((b(k), right, t(k)))
    return PlanarMesh(V, np.asarray(F))


def make_y(side: float = 20.0, arm: float = 20.0, tip: float = 10.0) -> PlanarMesh:
    """Equilateral hub triangle with a two-triangle arm and a cap on each side."""
    angles = np.deg2rad([90.0, 210.0, 330.0])
    R = side / np.sqrt(3.0)
    hub = np.column_stack([R * np.cos(angles), R * np.sin(angles)])
    V = [p for p in hub]
    F = [(0, 1, 2)]
    for i in range(3):
        a, c = i, (i + 1) % 3
        pa, pc = hub[a], hub[c]
        edge = pc - pa
        normal = np.array([edge[1], -edge[0]]) / np.linalg.norm(edge)
        if np.dot(normal, 0.5 * (pa + pc)) < 0:
            normal = -normal
        a2 = len(V)
        V.append(pa + normal * arm)
        c2 = len(V)
        V.append(pc + normal * arm)
        t = len(V)
        V.append(0.5 * (pa + pc) + normal * (arm + tip))
        F.append((a, c2, c))
        F.append((a, a2, c2))
        F.append((a2, t, c2))
    return PlanarMesh(np.asarray(V), np.asarray(F))


def undirected_edge_counts(F: np.ndarray) -> np.ndarray:
    F = np.asarray(F, dtype=np.int64)
    E = np.sort(np.concatenate([F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]]), axis=1)
    _, counts = np.unique(E, axis=0, return_counts=True)
    return counts


def directed_edges_unique(F: np.ndarray) -> bool:
    F = np.asarray(F, dtype=np.int64)
    E = np.concatenate([F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]])
    return np.unique(E, axis=0).shape[0] == E.shape[0]


@pytest.fixture
def strip_mesh() -> PlanarMesh:
    return make_strip()


@pytest.fixture
def y_mesh() -> PlanarMesh:
    return make_y()
