"""auxocom: SteadyCom analysis of auxotrophic microbial communities on COBRApy."""

__version__ = "0.1.0"
