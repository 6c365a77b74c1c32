"""
Volume Calculation - Plotting Utilities
Convergence figures for iterated volume estimates.
"""
import os

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import numpy as np

from .config import FIGURES_DIR

plt.rcParams['font.size'] = 11
plt.rcParams['figure.dpi'] = 150
plt.rcParams['axes.grid'] = True
plt.rcParams['grid.alpha'] = 0.3

# Color palette (colorblind-safe)
COLORS = ['#2196F3', '#FF9800', '#4CAF50', '#F44336', '#9C27B0',
          '#00BCD4', '#795548', '#607D8B']


def save_figure(fig, name, directory=FIGURES_DIR, tight=True):
    """Save figure as PNG.

    Args:
        fig: matplotlib Figure object
        name: Base filename (without extension)
        directory: Output directory (created if missing)
        tight: Apply tight_layout before saving (default True)

    Returns:
        str: Absolute path to saved file
    """
    os.makedirs(directory, exist_ok=True)
    path = os.path.abspath(os.path.join(directory, f'{name}.png'))
    if tight:
        fig.tight_layout()
    fig.savefig(path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    return path


def plot_convergence(history, domain_ids, reference=None, title=None):
    """Plot cumulative volume estimates against the number of samples.

    Args:
        history: List of per-domain result lists, one per merged batch
            (the i-th entry holds the estimate after i+1 batches)
        domain_ids: Domain ids, parallel to each result list
        reference: Optional mapping domain id -> exact volume
        title: Optional figure title

    Returns:
        matplotlib.figure.Figure
    """
    fig, axes = plt.subplots(1, 2, figsize=(12, 5))
    ax_vol, ax_err = axes

    for i, domain_id in enumerate(domain_ids):
        color = COLORS[i % len(COLORS)]
        samples = np.array([batch[i].num_samples for batch in history])
        mean = np.array([batch[i].mean for batch in history])
        std = np.array([batch[i].std_dev for batch in history])

        ax_vol.errorbar(samples, mean, yerr=std, color=color, marker='o',
                        markersize=3, capsize=2, label=f'Domain {domain_id}')
        if reference and domain_id in reference:
            ax_vol.axhline(reference[domain_id], color=color, linestyle='--',
                           linewidth=1.0)

        with np.errstate(divide='ignore', invalid='ignore'):
            rel = np.where(mean > 0.0, std / mean, np.nan)
        ax_err.loglog(samples, rel, color=color, marker='o', markersize=3,
                      label=f'Domain {domain_id}')

    # 1/sqrt(N) guide anchored at the first point of the first domain
    if history and history[0][0].mean > 0.0:
        samples = np.array([batch[0].num_samples for batch in history], dtype=float)
        rel0 = history[0][0].std_dev / history[0][0].mean
        ax_err.loglog(samples, rel0 * np.sqrt(samples[0] / samples),
                      color='#37474F', linestyle=':', label=r'$1/\sqrt{N}$')

    ax_vol.set_xlabel('Samples')
    ax_vol.set_ylabel('Volume [cm$^3$]')
    ax_vol.legend()
    ax_err.set_xlabel('Samples')
    ax_err.set_ylabel('Relative error')
    ax_err.legend()
    if title:
        fig.suptitle(title)
    return fig
