from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
from matplotlib.ticker import FuncFormatter

from .timeseries import SeriesSnapshot

CURVATURE_COLOR = "#3b82f6"
WEIGHT_COLOR = "#10b981"


class CurvatureChart:
    """
    Owns the Matplotlib figure with the curvature (left axis, mm) and weight
    (right axis, kg) series.

    Instances are chart sinks: calling one with a snapshot only stores it, so
    the publisher may call from any thread. ``refresh`` applies the newest
    snapshot and must run on the GUI thread.
    """

    def __init__(self, title: str = "Curvature / Weight"):
        self._lock = threading.Lock()
        self._pending: Optional[SeriesSnapshot] = None
        self.points_drawn = 0

        self.fig, self.ax = plt.subplots(figsize=(8.0, 4.5))
        self.fig.patch.set_facecolor("#0f172a")
        self.ax.set_facecolor("#0f172a")
        try:
            self.fig.canvas.manager.set_window_title(title)  # type: ignore[union-attr]
        except AttributeError:
            pass
        self.ax_weight = self.ax.twinx()

        self.curv_line, = self.ax.plot([], [], color=CURVATURE_COLOR, lw=2.0, marker="o",
                                       markersize=2, label="Kelengkungan (mm)")
        self.weight_line, = self.ax_weight.plot([], [], color=WEIGHT_COLOR, lw=2.0, marker="o",
                                                markersize=2, label="Berat (kg)")

        self.ax.set_xlabel("Waktu (detik)", color="#cbd5e1")
        self.ax.set_ylabel("Kelengkungan (mm)", color=CURVATURE_COLOR)
        self.ax_weight.set_ylabel("Berat (kg)", color=WEIGHT_COLOR)
        self.ax.tick_params(axis="x", colors="#94a3b8")
        self.ax.tick_params(axis="y", colors=CURVATURE_COLOR)
        self.ax_weight.tick_params(axis="y", colors=WEIGHT_COLOR)
        self.ax.yaxis.set_major_formatter(FuncFormatter(lambda v, _pos: f"{v:.1f} mm"))
        self.ax_weight.yaxis.set_major_formatter(FuncFormatter(lambda v, _pos: f"{v:.2f} kg"))
        self.ax.grid(True, color=(0.58, 0.64, 0.72, 0.2), linewidth=1)

        handles = [self.curv_line, self.weight_line]
        self.ax.legend(handles, [h.get_label() for h in handles], loc="upper left",
                       facecolor="#1e293b", labelcolor="#f8fafc", framealpha=0.8)
        self.fig.tight_layout()

    def __call__(self, snapshot: SeriesSnapshot) -> None:
        with self._lock:
            self._pending = snapshot

    def refresh(self) -> bool:
        with self._lock:
            snapshot, self._pending = self._pending, None
        if snapshot is None:
            return False
        self.apply(snapshot)
        self.fig.canvas.draw_idle()
        self.fig.canvas.flush_events()
        return True

    def apply(self, snapshot: SeriesSnapshot) -> None:
        t = list(snapshot.time)
        self.curv_line.set_data(t, list(snapshot.curvature))
        self.weight_line.set_data(t, list(snapshot.weight))
        if t:
            t0, t1 = t[0], t[-1]
            self.ax.set_xlim(t0, t1 if t1 > t0 else t0 + 1.0)
            # Both y axes always include zero.
            self.ax.set_ylim(_axis_range(snapshot.curvature))
            self.ax_weight.set_ylim(_axis_range(snapshot.weight))
        else:
            self.ax.set_xlim(0.0, 1.0)
            self.ax.set_ylim(0.0, 1.0)
            self.ax_weight.set_ylim(0.0, 1.0)
        self.points_drawn = len(t)

    def save(self, path: Path | str) -> Path:
        path_obj = Path(path)
        path_obj.parent.mkdir(parents=True, exist_ok=True)
        self.fig.savefig(path_obj, dpi=120, facecolor=self.fig.get_facecolor())
        return path_obj

    def close(self) -> None:
        plt.close(self.fig)


def _axis_range(values) -> tuple[float, float]:
    lo = min(0.0, min(values))
    hi = max(1.0, max(values) * 1.1)
    return lo * 1.1, hi
