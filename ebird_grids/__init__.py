"""
Gridded reporting-proportion analysis of Indian eBird checklists.

Raw EBD records are reduced to a working set, gridded into 25 km
equal-area cells and coarse time periods, and aggregated into per-cell
reporting proportions for species and survey protocols.
"""

__version__ = "0.1.0"
