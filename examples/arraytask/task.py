"""Payload for the arraytask example: summarize the input rows of one task."""

import csv
import json
import os

from slurm_jobkit.environment import PayloadEnv

env = PayloadEnv.from_environ()

with open(os.path.join(env.input_dirs["DATA_DIR"], "values.csv")) as fh:
    rows = [float(row["value"]) for row in csv.DictReader(fh)]

# task i takes every i-th row
picked = rows[env.task_id - 1 :: env.task_id]
summary = {
    "job_id": env.job_id,
    "task_id": env.task_id,
    "n": len(picked),
    "mean": sum(picked) / len(picked) if picked else None,
}

with open(env.result_path("summary", ".json"), "w") as fh:
    json.dump(summary, fh, indent=2)
print(json.dumps(summary))
