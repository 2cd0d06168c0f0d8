import sys

from rig_calibration import run

sys.exit(run())
