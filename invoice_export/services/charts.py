"""Off-screen chart rasterization for document embedding.

Charts are drawn on a matplotlib ``Figure`` bound to an Agg canvas, never on
a display, and captured as PNG after a short settle step. One surface is
shared per rasterizer, so renders are serialized.
"""

import asyncio
import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure
from matplotlib.ticker import FuncFormatter

from invoice_export.core.config import settings
from invoice_export.core.exceptions import ChartRenderError
from invoice_export.core.observability import get_job_id, trace_function

logger = logging.getLogger(__name__)

PALETTE = (
    "#4285F4", "#34A853", "#FBBC05", "#EA4335", "#FF6B6B",
    "#4ECDC4", "#45B7D1", "#96CEB4", "#FFEAA7", "#DDA0DD",
)

PIE_LABEL_MIN_PERCENT = 5.0

TEXT_COLOR = "#333333"
TICK_COLOR = "#666666"
GRID_COLOR = "#f0f0f0"


class ChartKind(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"


@dataclass
class ChartDataset:
    label: str
    values: List[float]


@dataclass
class ChartSeries:
    """Labelled data series. Every dataset has one value per label."""
    labels: List[str]
    datasets: List[ChartDataset] = field(default_factory=list)

    def __post_init__(self) -> None:
        for dataset in self.datasets:
            if len(dataset.values) != len(self.labels):
                raise ValueError(
                    f"Dataset '{dataset.label}' has {len(dataset.values)} values "
                    f"for {len(self.labels)} labels"
                )

    @property
    def is_empty(self) -> bool:
        return not self.labels or not self.datasets


@dataclass
class RenderedChart:
    """PNG raster plus where the document should place it."""
    image: bytes
    width: int
    height: int
    title: str
    kind: ChartKind
    format: str = "PNG"
    x: Optional[float] = None
    y: Optional[float] = None


def palette_color(index: int) -> str:
    return PALETTE[index % len(PALETTE)]


def pie_label(percent: float) -> str:
    """Slice label; small slices get none to avoid clutter."""
    if percent < PIE_LABEL_MIN_PERCENT:
        return ""
    return f"{percent:.1f}%"


def _currency_tick(value: float, _position: int) -> str:
    return f"Bs. {value:,.0f}"


class ChartRasterizer:
    """Renders bar, line and pie charts to fixed-size PNG images."""

    def __init__(
        self,
        settle_seconds: Optional[float] = None,
        dpi: Optional[int] = None,
    ) -> None:
        self.settle_seconds = settings.CHART_SETTLE_SECONDS if settle_seconds is None else settle_seconds
        self.dpi = dpi or settings.CHART_DPI
        self._surface_lock = asyncio.Lock()

    @trace_function("chart_rasterizer.render")
    async def render(
        self,
        series: ChartSeries,
        kind: ChartKind | str,
        title: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
        x: Optional[float] = None,
        y: Optional[float] = None,
    ) -> RenderedChart:
        """Rasterize ``series`` into a ``width`` x ``height`` PNG."""
        kind = ChartKind(kind)
        width = width or settings.CHART_WIDTH
        height = height or settings.CHART_HEIGHT
        if width <= 0 or height <= 0:
            raise ChartRenderError(f"Invalid chart size {width}x{height}")
        if series.is_empty:
            raise ChartRenderError(f"Chart '{title}' has no data")

        async with self._surface_lock:
            try:
                figure = self._create_surface(width, height)
                canvas = FigureCanvasAgg(figure)
                self._draw(figure, series, kind, title)
                canvas.draw()
            except ChartRenderError:
                raise
            except Exception as exc:
                raise ChartRenderError(f"Failed to draw chart '{title}': {exc}") from exc

            # Settle point: drawing is complete before the raster is captured
            await asyncio.sleep(self.settle_seconds)

            try:
                buffer = io.BytesIO()
                canvas.print_png(buffer)
                rendered_width, rendered_height = canvas.get_width_height()
            except Exception as exc:
                raise ChartRenderError(f"Failed to capture chart '{title}': {exc}") from exc
            finally:
                figure.clear()

        logger.debug(
            "Rendered chart",
            extra={"job_id": get_job_id(), "chart": title, "kind": kind.value},
        )
        return RenderedChart(
            image=buffer.getvalue(),
            width=rendered_width,
            height=rendered_height,
            title=title,
            kind=kind,
            x=x,
            y=y,
        )

    def _create_surface(self, width: int, height: int) -> Figure:
        # Agg truncates the pixel size, so pad by a fraction of a pixel
        return Figure(
            figsize=((width + 0.001) / self.dpi, (height + 0.001) / self.dpi),
            dpi=self.dpi,
            facecolor="white",
        )

    def _draw(self, figure: Figure, series: ChartSeries, kind: ChartKind, title: str) -> None:
        ax = figure.add_subplot(111)
        if title:
            ax.set_title(title, fontsize=14, fontweight="bold", color=TEXT_COLOR)

        if kind is ChartKind.PIE:
            self._draw_pie(ax, series)
        elif kind is ChartKind.BAR:
            self._draw_bars(ax, series)
        else:
            self._draw_lines(ax, series)

        figure.tight_layout()

    def _draw_pie(self, ax, series: ChartSeries) -> None:
        values = series.datasets[0].values
        if any(value < 0 for value in values) or sum(values) <= 0:
            raise ChartRenderError("Pie chart needs non-negative values with a positive total")

        colors = [palette_color(i) for i in range(len(series.labels))]
        wedges, _texts, _autotexts = ax.pie(
            values,
            colors=colors,
            autopct=pie_label,
            startangle=90,
            counterclock=False,
            textprops={"fontsize": 9, "color": TEXT_COLOR},
        )
        ax.axis("equal")
        ax.legend(
            wedges,
            series.labels,
            loc="upper center",
            bbox_to_anchor=(0.5, -0.02),
            ncol=min(len(series.labels), 3),
            fontsize=8,
            frameon=False,
        )

    def _draw_bars(self, ax, series: ChartSeries) -> None:
        count = len(series.datasets)
        group_width = 0.8
        bar_width = group_width / count
        positions = range(len(series.labels))

        for index, dataset in enumerate(series.datasets):
            offset = -group_width / 2 + bar_width * (index + 0.5)
            ax.bar(
                [p + offset for p in positions],
                dataset.values,
                width=bar_width,
                color=palette_color(index),
                label=dataset.label,
            )
        self._style_axes(ax, series.labels, legend=count > 1)

    def _draw_lines(self, ax, series: ChartSeries) -> None:
        positions = list(range(len(series.labels)))
        for index, dataset in enumerate(series.datasets):
            ax.plot(
                positions,
                dataset.values,
                color=palette_color(index),
                marker="o",
                linewidth=2,
                label=dataset.label,
            )
        self._style_axes(ax, series.labels, legend=len(series.datasets) > 1)

    def _style_axes(self, ax, labels: Sequence[str], legend: bool) -> None:
        ax.set_xticks(range(len(labels)))
        ax.set_xticklabels(labels, rotation=30 if len(labels) > 6 else 0, ha="right" if len(labels) > 6 else "center")
        ax.tick_params(axis="both", labelsize=8, colors=TICK_COLOR)
        ax.yaxis.set_major_formatter(FuncFormatter(_currency_tick))
        ax.grid(True, color=GRID_COLOR)
        ax.set_axisbelow(True)
        for spine in ("top", "right"):
            ax.spines[spine].set_visible(False)
        if legend:
            ax.legend(loc="upper center", bbox_to_anchor=(0.5, -0.12), ncol=3, fontsize=8, frameon=False)
