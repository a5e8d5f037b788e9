import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import seaborn as sns
import numpy as np
import pandas as pd
from asv_seq.error_model import transitions, nucleotides
from asv_seq.fastq import phred_to_error

def observed_frequencies(model):
    """Observed transition frequencies (per true base & PHRED score) of the tallies
the model was fit to, or None."""
    tallies = model.tally_frame()
    if tallies is None:
        return None
    freqs = []
    for i, true in enumerate(nucleotides):
        block = tallies.iloc[4*i:4*i+4]
        totals = block.sum()
        freqs.append(block/totals.where(totals > 0))
    return pd.concat(freqs)

def plot_errors(model, include_self=False, nominal=True, axes=None, y_floor=1e-7,
                point_kwargs=dict(marker='.', s=12, alpha=0.5, zorder=2),
                line_kwargs=dict(lw=1.5, zorder=3),
                nominal_kwargs=dict(color='k', ls='dotted', lw=1, zorder=1)):
    """Grid of error rates vs. PHRED score: one panel per transition.

Points are observed frequencies, lines are the fitted rates, and the dotted line
is the error rate implied by the PHRED score (divided evenly among the three
possible substitutions). Returns the matplotlib Figure.
"""
    shown = [t for t in transitions if include_self or t[0] != t[-1]]
    ncols = 4 if include_self else 3
    if axes is None:
        fig, axes = plt.subplots(len(nucleotides), ncols, figsize=(3*ncols, 10), sharex=True, sharey=True, squeeze=False)
    else:
        fig = np.ravel(axes)[0].figure
    axes = np.asarray(axes).reshape(len(nucleotides), ncols)
    rates = model.to_frame()
    observed = observed_frequencies(model)
    Q = rates.columns.values
    colors = dict(zip(nucleotides, sns.color_palette('colorblind', n_colors=len(nucleotides))))
    for ax, transition in zip(axes.flat, shown):
        color = colors[transition[-1]]
        if observed is not None:
            O = observed.loc[transition]
            seen = O.notnull() & (O > 0)
            ax.scatter(Q[seen.values], O[seen].values, color=color, **point_kwargs)
        ax.plot(Q, rates.loc[transition].clip(lower=y_floor).values, color=color, label=transition, **line_kwargs)
        if nominal:
            expected = phred_to_error(Q)
            ax.plot(Q, (1 - expected if transition[0] == transition[-1] else expected/3).clip(y_floor), **nominal_kwargs)
        ax.set_yscale('log')
        ax.set_title(transition)
        text_color_legend(ax, loc='lower left', bbox_to_anchor=(0, 0))
    for ax in axes[-1]:
        ax.set_xlabel('PHRED Score')
    for ax in axes[:, 0]:
        ax.set_ylabel('Error Frequency')
    sns.despine(fig)
    fig.tight_layout()
    return fig

def text_color_legend(ax, visible_handles=False, legend_prop={'weight':'semibold'}, bbox_to_anchor=(1, 1), **kargs):
    """text_color_legend() -> eliminates legend key and simply colors labels with the color of the lines."""
    handles, labels = ax.get_legend_handles_labels()
    if not visible_handles:
        kargs.update(handlelength=0, handletextpad=0)
    L = ax.legend(handles, labels, prop=legend_prop, borderaxespad=0, bbox_to_anchor=bbox_to_anchor, frameon=False, **kargs)
    for handle, text in zip(handles, L.get_texts()):
        text.set_color(handle.get_color())
    return L
