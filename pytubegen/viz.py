"""
Optional 3D views of a rigged mesh.

plotly and matplotlib are imported lazily; both live in the ``viz`` extra.
Every builder returns a figure, or None when the backend is unavailable.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def _resolve_backend(backend: str) -> str:
    if backend != "auto":
        return backend
    try:
        import plotly.graph_objects  # noqa: F401

        return "plotly"
    except ImportError:
        try:
            import matplotlib.pyplot  # noqa: F401

            return "matplotlib"
        except ImportError:
            return "plotly"


def dominant_bone(skin_indices: np.ndarray, skin_weights: np.ndarray) -> np.ndarray:
    """Index of the strongest bone per vertex."""
    I = np.asarray(skin_indices, dtype=np.int64)
    W = np.asarray(skin_weights, dtype=float)
    return I[np.arange(I.shape[0]), np.argmax(W, axis=1)]


def visualize_rig_3d(
    vertices: np.ndarray,
    faces: np.ndarray,
    joints: Optional[np.ndarray] = None,
    bones: Optional[np.ndarray] = None,
    vertex_values: Optional[np.ndarray] = None,
    title: str = "Rigged Mesh",
    color: str = "lightblue",
    backend: str = "auto",
    width: int = 800,
    height: int = 600,
) -> Optional[object]:
    """
    Draw a mesh with its skeleton overlaid.

    Args:
        vertices, faces: Triangle mesh.
        joints, bones: Skeleton; skipped when either is empty.
        vertex_values: Optional per-vertex scalar (e.g. :func:`dominant_bone`)
            used to colour the surface instead of ``color``.
        backend: 'plotly', 'matplotlib' or 'auto'.

    Returns:
        Figure object (backend-dependent) or None if visualization fails
    """
    V = np.asarray(vertices, dtype=float)
    F = np.asarray(faces, dtype=np.int64)
    J = np.zeros((0, 3)) if joints is None else np.asarray(joints, dtype=float)
    B = np.zeros((0, 2), dtype=np.int64) if bones is None else np.asarray(bones, dtype=np.int64)
    backend = _resolve_backend(backend)
    if backend == "plotly":
        return _rig_plotly(V, F, J, B, vertex_values, title, color, width, height)
    elif backend == "matplotlib":
        return _rig_matplotlib(V, F, J, B, vertex_values, title, color)
    else:
        raise ValueError(f"Unknown backend: {backend}")


def _rig_plotly(V, F, J, B, values, title, color, width, height):
    try:
        import plotly.graph_objects as go
    except ImportError:
        logger.warning("Plotly not available")
        return None

    if values is None:
        surface = go.Mesh3d(x=V[:, 0], y=V[:, 1], z=V[:, 2], i=F[:, 0], j=F[:, 1], k=F[:, 2], opacity=0.6, color=color, name="Mesh")
    else:
        surface = go.Mesh3d(
            x=V[:, 0], y=V[:, 1], z=V[:, 2], i=F[:, 0], j=F[:, 1], k=F[:, 2],
            intensity=np.asarray(values, dtype=float), colorscale="Turbo", opacity=0.8, name="Mesh",
        )
    fig = go.Figure(data=[surface])

    if J.shape[0] and B.shape[0]:
        xs, ys, zs = [], [], []
        for u, v in B:
            p, q = J[int(u)], J[int(v)]
            xs += [p[0], q[0], None]
            ys += [p[1], q[1], None]
            zs += [p[2], q[2], None]
        fig.add_trace(go.Scatter3d(x=xs, y=ys, z=zs, mode="lines", line=dict(color="crimson", width=5), name="Bones"))
        fig.add_trace(
            go.Scatter3d(x=J[:, 0], y=J[:, 1], z=J[:, 2], mode="markers", marker=dict(size=4, color="black"), name="Joints")
        )

    fig.update_layout(
        title=title,
        autosize=False,
        width=width,
        height=height,
        scene=dict(aspectmode="data"),
    )
    return fig


def _rig_matplotlib(V, F, J, B, values, title, color):
    try:
        import matplotlib.pyplot as plt
        from mpl_toolkits.mplot3d.art3d import Poly3DCollection
    except ImportError:
        logger.warning("Matplotlib not available")
        return None

    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(111, projection="3d")
    poly3d = Poly3DCollection(V[F], alpha=0.5, facecolor=color, edgecolor=None)
    if values is not None:
        face_values = np.asarray(values, dtype=float)[F].mean(axis=1)
        poly3d.set_array(face_values)
        poly3d.set_cmap("turbo")
    ax.add_collection3d(poly3d)
    for u, v in B:
        p, q = J[int(u)], J[int(v)]
        ax.plot([p[0], q[0]], [p[1], q[1]], [p[2], q[2]], color="crimson", linewidth=2)
    if J.shape[0]:
        ax.scatter(J[:, 0], J[:, 1], J[:, 2], color="black", s=8)

    if V.shape[0]:
        ax.set_xlim(V[:, 0].min(), V[:, 0].max())
        ax.set_ylim(V[:, 1].min(), V[:, 1].max())
        ax.set_zlim(V[:, 2].min(), V[:, 2].max())
    ax.set_title(title)
    plt.tight_layout()
    return fig
