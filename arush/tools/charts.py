"""
Client-rendered visualizations.

``generateChart`` validates a Chart.js spec. ``generateMarkmap`` turns a
Markdown outline into the node tree a Markmap mind map is drawn from.
"""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import Tool, ToolArgs, ToolContext, ToolErr, ToolOk, ToolResult

ChartType = Literal["bar", "line", "pie", "doughnut", "radar", "polarArea", "bubble", "scatter"]


class ChartDataset(BaseModel):
    model_config = ConfigDict(extra="allow")

    label: str | None = None
    data: list[Any]


class ChartData(BaseModel):
    labels: list[str | int | float] | None = None
    datasets: list[ChartDataset] = Field(min_length=1)


class GenerateChart(Tool):
    name = "generateChart"
    description = (
        "Generate a chart from structured data. The chart is rendered by the client using Chart.js; "
        "provide the chart type, data (labels and datasets) and optional Chart.js options."
    )
    failure_message = "Failed to process chart parameters for rendering"

    class Args(ToolArgs):
        type: ChartType = Field(description="The Chart.js chart type.")
        data: ChartData = Field(description="Chart data: labels and at least one dataset.")
        options: dict[str, Any] | None = Field(default=None, description="Optional Chart.js options object.")
        width: int = Field(default=600, ge=100, le=2000, description="Canvas width in pixels.")
        height: int = Field(default=400, ge=100, le=2000, description="Canvas height in pixels.")

    async def run(self, args: GenerateChart.Args, ctx: ToolContext) -> ToolResult:
        chart = args.model_dump(exclude_none=True)
        ctx.side_channel.write("chart_generated", chart)
        return ToolOk(message="Chart parameters received for frontend rendering.", payload={"chart": chart})


HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")
LIST_ITEM_PATTERN = re.compile(r"^(\s*)(?:[-*+]|\d+[.)])\s+(.+?)\s*$")


def outline_tree(markdown: str) -> dict[str, Any] | None:
    """
    Build a mind-map tree from a Markdown outline.

    Headings nest by level, list items nest under the nearest heading by
    indentation, and other lines hang off the nearest heading. Fenced code is
    skipped. Returns ``None`` when the outline has no content.
    """
    root: dict[str, Any] = {"content": "", "children": []}
    stack: list[tuple[int, dict[str, Any]]] = [(0, root)]
    heading_depth = 0
    in_fence = False

    for line in markdown.expandtabs(4).splitlines():
        if line.lstrip().startswith(("```", "~~~")):
            in_fence = not in_fence
            continue
        if in_fence or not line.strip():
            continue

        heading = HEADING_PATTERN.match(line)
        item = LIST_ITEM_PATTERN.match(line)
        if heading:
            depth = heading_depth = len(heading.group(1))
            content = heading.group(2)
        elif item:
            depth = heading_depth + 1 + len(item.group(1)) // 2
            content = item.group(2)
        else:
            depth = heading_depth + 1
            content = line.strip()

        node: dict[str, Any] = {"content": content, "children": []}
        while stack[-1][0] >= depth:
            stack.pop()
        stack[-1][1]["children"].append(node)
        stack.append((depth, node))

    if not root["children"]:
        return None
    # A single top-level node is the map's own root
    if len(root["children"]) == 1:
        return root["children"][0]
    return root


class GenerateMarkmap(Tool):
    name = "generateMarkmap"
    description = "Generate a Markmap mind map diagram from a Markdown outline."
    failure_message = "Failed to generate Markmap diagram"

    class Args(ToolArgs):
        markdown: str = Field(min_length=1, description="Markdown outline to convert to a Markmap diagram.")

    async def run(self, args: GenerateMarkmap.Args, ctx: ToolContext) -> ToolResult:
        ctx.side_channel.write("markmap_generation_status", "Generating Markmap diagram...")
        tree = outline_tree(args.markdown)
        if tree is None:
            ctx.side_channel.write("markmap_generation_error", "The outline is empty.")
            return ToolErr(message="Failed to generate Markmap diagram.", error_details="empty outline")

        ctx.side_channel.write("markmap_generated", tree)
        return ToolOk(message="Markmap diagram generated.", payload={"markmap": tree})
