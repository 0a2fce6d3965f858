import os
from typing import List

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from livepeer_stress.outcome import RequestOutcome


def _ensure_dir(filepath: str):
    os.makedirs(os.path.dirname(filepath) or ".", exist_ok=True)


def plot_durations(outcomes: List[RequestOutcome], filepath: str, title: str = "Request Durations"):
    """Per-request duration bars (green = success, red = failure) next to a duration histogram."""
    if not outcomes:
        print("No outcomes to plot")
        return
    _ensure_dir(filepath)

    ordered = sorted(outcomes, key=lambda o: o.request_num)
    nums = np.array([o.request_num for o in ordered])
    durations = np.array([o.duration_ms for o in ordered], dtype=float)
    colors = ["tab:green" if o.success else "tab:red" for o in ordered]

    fig, (ax_req, ax_hist) = plt.subplots(1, 2, figsize=(12, 5))

    ax_req.bar(nums, durations, color=colors, edgecolor="black")
    ax_req.axhline(durations.mean(), color="orange", linestyle="--", linewidth=2,
                   label=f"mean {durations.mean():.0f}ms")
    ax_req.set_title(f"{title} - per request")
    ax_req.set_xlabel("Request #")
    ax_req.set_ylabel("Duration (ms)")
    ax_req.legend(loc="best")
    ax_req.grid(axis="y", alpha=0.3)

    ax_hist.hist(durations, bins=min(15, max(1, len(durations))), color="tab:blue", edgecolor="black")
    for p, style in ((50, ":"), (90, "--"), (99, "-.")):
        ax_hist.axvline(np.percentile(durations, p), color="black", linestyle=style, label=f"p{p}")
    ax_hist.set_title(f"{title} - distribution")
    ax_hist.set_xlabel("Duration (ms)")
    ax_hist.set_ylabel("Count")
    ax_hist.legend(loc="best")
    ax_hist.grid(axis="y")

    fig.tight_layout()
    fig.savefig(filepath)
    plt.close(fig)
    print(f"Saved plot to {filepath}")
