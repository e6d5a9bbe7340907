"""Bar chart tool.

Renders the chart as text; the caller decides how to display it.
"""

from __future__ import annotations

from ..schemas import ChartInput

BAR_WIDTH = 40


def render_bars(payload: ChartInput) -> list[str]:
    peak = max(abs(point.value) for point in payload.data) or 1.0
    label_width = max(len(point.label) for point in payload.data)
    lines = []
    for point in payload.data:
        bar = "#" * max(1, round(abs(point.value) / peak * BAR_WIDTH))
        lines.append(f"{point.label.ljust(label_width)} | {bar} {point.value:g}")
    return lines


def generate_bar_chart(payload: ChartInput) -> dict:
    return {
        "message": "Chart has been generated and displayed to the user!",
        "chart": "\n".join(render_bars(payload)),
    }
