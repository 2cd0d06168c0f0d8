"""Fakes for the camera platform and the calibration backend."""
