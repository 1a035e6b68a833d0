"""Allow ``python -m slurm_jobkit``."""

import sys

from slurm_jobkit.cli import main

sys.exit(main())
