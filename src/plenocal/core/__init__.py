"""
Lenslet camera model, ray geometry and feature containers.
"""
