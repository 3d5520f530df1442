import matplotlib
matplotlib.use("Agg")  # Ensure non-interactive backend for thread safety
import matplotlib.pyplot as plt
import seaborn as sns
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from matplotlib.figure import Figure

PlotTask = Tuple[str, Callable[[], Optional[Figure]]]


class BasePlotter:
    """
    Shared plumbing for the static plot suites: seaborn styling, a task runner that
    isolates failures, and optional saving of the produced figures.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        self.config = config
        self.logger = logger
        sns.set_theme(style="whitegrid")
        self.dpi = 150

    def _run_tasks(self, tasks: List[PlotTask], output_dir: Optional[Path] = None) -> Dict[str, Figure]:
        """
        Execute plotting tasks sequentially; a failing task is logged and skipped.
        Tasks returning None were not applicable and produce no figure.
        """
        figures: Dict[str, Figure] = {}
        failures = []
        for name, fn in tasks:
            try:
                fig = fn()
            except Exception as exc:  # noqa: BLE001
                self.logger.warning(f"Failed plot '{name}': {exc}")
                failures.append(name)
                plt.close('all')
                continue
            if fig is None:
                continue
            figures[name] = fig
            if output_dir is not None:
                self._save(fig, Path(output_dir) / f"{name}.png")

        if failures:
            self.logger.warning(f"{len(failures)} visualization task(s) failed: {failures}")
        return figures

    def _save(self, fig: Figure, path: Path) -> None:
        """Helper to save a figure without closing it."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(path, dpi=self.dpi, bbox_inches='tight')
            self.logger.info(f"Saved plot to {path}")
        except Exception as e:
            self.logger.warning(f"Failed to save plot {path}: {e}")

    @staticmethod
    def _grid(n: int, ncols: int = 3, size: Tuple[float, float] = (4.5, 3.5)):
        """Subplot grid for `n` panels; unused axes are hidden."""
        ncols = max(1, min(ncols, n))
        nrows = (n + ncols - 1) // ncols
        fig, axes = plt.subplots(nrows, ncols, figsize=(size[0] * ncols, size[1] * nrows), squeeze=False)
        flat = axes.ravel()
        for ax in flat[n:]:
            ax.set_visible(False)
        return fig, flat[:n]
