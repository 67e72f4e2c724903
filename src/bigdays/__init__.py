"""
Big Tornado Days Analysis Framework.

A sequential, research-grade pipeline for studying the largest tornado days in
the United States. Tornado reports from the SPC catalog are grouped into
convective days, days with many tornadoes ("big days") are summarised by their
total energy dissipation, and the atmospheric environment over each day's
tornado hull is extracted from NARR reanalysis. Mixed-effects regression then
relates big-day energy to the environment and a linear trend, and a sample of
non-event days provides an environmental contrast.
"""

__version__ = "0.1.0"
