from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

LOGGER = logging.getLogger("spam_getblock.harness.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 150
plt.rcParams["font.size"] = 10
plt.rcParams["axes.titlesize"] = 13

STATUS_COLORS = {
    "ok": "#2E86AB",
    "failed": "#C73E1D",
}

_RESERVED_COLUMNS = ("id", "ok", "failed_stage", "error")


def render_stage_chart(df: pd.DataFrame, chart_path: Path, title: str | None = None) -> Path | None:
    """Render per-stage latency box plots plus the failure count per stage.

    ``df`` is the frame built by ``ResultCollector.build_dataframe``. Returns
    None when there is nothing to plot.
    """
    stage_columns = [c for c in df.columns if c not in _RESERVED_COLUMNS]
    if df.empty or not stage_columns:
        LOGGER.warning("No task results available for the stage chart")
        return None

    long_df = df.melt(
        id_vars=["id", "ok"],
        value_vars=stage_columns,
        var_name="stage",
        value_name="seconds",
    )
    # Zero means the stage never ran.
    long_df = long_df[long_df["seconds"].astype(float) > 0].copy()
    long_df["milliseconds"] = long_df["seconds"].astype(float) * 1e3
    long_df["status"] = np.where(long_df["ok"].astype(bool), "ok", "failed")

    failures = df["failed_stage"].value_counts().reindex(stage_columns, fill_value=0)

    fig, (ax_latency, ax_failures) = plt.subplots(
        1, 2, figsize=(14, 6), gridspec_kw={"width_ratios": [3, 1]}
    )

    if long_df.empty:
        ax_latency.text(0.5, 0.5, "no completed stages", ha="center", va="center")
    else:
        sns.boxplot(
            data=long_df,
            x="stage",
            y="milliseconds",
            hue="status",
            order=stage_columns,
            hue_order=[s for s in STATUS_COLORS if s in set(long_df["status"])],
            palette=STATUS_COLORS,
            ax=ax_latency,
            linewidth=1.2,
            width=0.7,
        )
    ax_latency.set_xlabel("Stage", fontweight="semibold", labelpad=10)
    ax_latency.set_ylabel("Latency (ms)", fontweight="semibold", labelpad=10)
    ax_latency.set_ylim(bottom=0)
    ax_latency.set_title(title or f"Stage latency ({len(df)} tasks)", fontweight="bold", pad=12)
    ax_latency.spines["top"].set_visible(False)
    ax_latency.spines["right"].set_visible(False)

    ax_failures.bar(
        np.arange(len(stage_columns)),
        failures.to_numpy(),
        color=STATUS_COLORS["failed"],
    )
    ax_failures.set_xticks(np.arange(len(stage_columns)))
    ax_failures.set_xticklabels(stage_columns, rotation=30, ha="right")
    ax_failures.set_ylabel("Failed tasks", fontweight="semibold", labelpad=10)
    ax_failures.set_title("Failures by stage", fontweight="bold", pad=12)
    ax_failures.grid(True, alpha=0.3, linestyle="--", linewidth=0.5, axis="y")

    chart_path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white", edgecolor="none")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path
