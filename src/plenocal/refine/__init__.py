"""
Nonlinear refinement of a lenslet camera model and checkerboard poses.

Parameters are packed into one vector, every complete checkerboard observation
yields a point-to-ray residual, and a bounded trust-region solver minimizes them.
"""
