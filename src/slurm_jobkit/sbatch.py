"""SBATCH launcher assembly and submission.

The launcher only requests resources, loads environment modules and hands
over to ``jobkit run`` with ``exec`` so the runtime receives Slurm's USR1
directly.
"""

from __future__ import annotations

import io
import logging
import os
import re
import shlex
import subprocess

from slurm_jobkit.config import Defaults, ProjectConfig, SbatchOptions
from slurm_jobkit.core import ensure_directory

logger = logging.getLogger("slurm_jobkit")

_SUBMITTED_RE = re.compile(r"Submitted batch job (\d+)")


def output_patterns(options: SbatchOptions, jobs_dir_name: str) -> tuple[str, str]:
    """Return Slurm --output/--error patterns relative to the submit dir.

    Slurm opens these before the job starts and does not create
    directories, so they live directly in the jobs dir.

    Args:
        options: Sbatch options.
        jobs_dir_name: Jobs directory name.

    Returns:
        Tuple of (output pattern, error pattern).
    """
    stem = "slurm-%A_%a" if options.array else "slurm-%j"
    return f"{jobs_dir_name}/{stem}.out", f"{jobs_dir_name}/{stem}.err"


def emit_sbatch_header(
    out: io.StringIO, options: SbatchOptions, defaults: Defaults
) -> None:
    """Emit shebang and #SBATCH directives.

    Args:
        out: Output buffer.
        options: Sbatch options.
        defaults: Loaded defaults.
    """
    assert isinstance(out, io.StringIO), "out must be an io.StringIO"
    assert options.signal_seconds > 0, "signal_seconds must be positive"

    stdout_pattern, stderr_pattern = output_patterns(options, defaults.jobs_dir_name)

    out.write("#!/usr/bin/env bash\n")
    out.write(f"#SBATCH --job-name={options.job_name}\n")
    if options.time:
        out.write(f"#SBATCH --time={options.time}\n")
    if options.mem:
        out.write(f"#SBATCH --mem={options.mem}\n")
    if options.partition:
        out.write(f"#SBATCH --partition={options.partition}\n")
    out.write(f"#SBATCH --nodes={options.nodes}\n")
    if options.ntasks:
        out.write(f"#SBATCH --ntasks={options.ntasks}\n")
    out.write(f"#SBATCH --ntasks-per-node={options.ntasks_per_node}\n")
    out.write(f"#SBATCH --cpus-per-task={options.cpus_per_task}\n")
    if options.hint:
        out.write(f"#SBATCH --hint={options.hint}\n")
    if options.open_mode:
        out.write(f"#SBATCH --open-mode={options.open_mode}\n")
    out.write(f"#SBATCH --signal=B:USR1@{options.signal_seconds}\n")
    out.write(f"#SBATCH --output={stdout_pattern}\n")
    out.write(f"#SBATCH --error={stderr_pattern}\n")
    if options.mail_type:
        out.write(f"#SBATCH --mail-type={options.mail_type}\n")
    if options.array:
        out.write(f"#SBATCH --array={options.array}\n")
    for key, value in sorted(options.extra.items()):
        out.write(f"#SBATCH --{key}={value}\n")


def emit_module_block(out: io.StringIO, modules: tuple[str, ...]) -> None:
    """Emit environment module loading, guarded for hosts without modules.

    Args:
        out: Output buffer.
        modules: Modules to load, in order.
    """
    if not modules:
        return
    out.write("if command -v module >/dev/null 2>&1; then\n")
    out.write("  module purge\n")
    for module in modules:
        out.write(f"  module load {shlex.quote(module)}\n")
    out.write("else\n")
    out.write(
        '  printf "[%s] WARN  | module command not available; '
        'assuming tools on PATH\\n" "$(date -Is)" >&2\n'
    )
    out.write("fi\n")


def emit_run_command(
    out: io.StringIO, project: ProjectConfig, defaults: Defaults
) -> None:
    """Emit the hand-over to the Python runtime.

    Args:
        out: Output buffer.
        project: Loaded project.
        defaults: Loaded defaults.
    """
    out.write(
        f"exec {shlex.quote(defaults.python)} -m slurm_jobkit run"
        f" --file {shlex.quote(project.project_file)}"
        ' --script "$0"\n'
    )


def generate_sbatch_script(
    project: ProjectConfig,
    options: SbatchOptions,
    defaults: Defaults,
) -> str:
    """Generate the complete launcher script.

    Args:
        project: Loaded project.
        options: Sbatch options.
        defaults: Loaded defaults.

    Returns:
        Launcher script as string.
    """
    assert isinstance(project, ProjectConfig), "project must be a ProjectConfig"

    out = io.StringIO()
    emit_sbatch_header(out, options, defaults)
    out.write("\nset -eEuo pipefail\n\n")
    emit_module_block(out, project.modules)
    emit_run_command(out, project, defaults)
    return out.getvalue()


def parse_job_id(stdout: str) -> str:
    """Extract the job id from sbatch output ("" if absent)."""
    match = _SUBMITTED_RE.search(stdout)
    return match.group(1) if match else ""


def _write_export(script: str, filepath: str) -> int:
    """Write launcher script to file instead of submitting.

    Args:
        script: Generated script content.
        filepath: Output file path.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        with open(filepath, "w") as fh:
            fh.write(script)
        os.chmod(filepath, 0o755)
        logger.info("Exported sbatch script to %s", filepath)
        return 0
    except OSError as exc:
        logger.error("Failed to write export file %s: %s", filepath, exc)
        return 1


def _submit_to_sbatch(script: str, project_root: str) -> int:
    """Pipe script to sbatch from the project root.

    Args:
        script: Generated script content.
        project_root: Submit directory (becomes SLURM_SUBMIT_DIR).

    Returns:
        0 on success, 1 on failure.
    """
    try:
        result = subprocess.run(
            ["sbatch"],
            input=script,
            text=True,
            capture_output=True,
            cwd=project_root,
        )
    except OSError as exc:
        logger.error("Job submission failed: %s", exc)
        return 1

    if result.returncode != 0:
        logger.error("Job submission failed: %s", result.stderr.strip())
        return 1

    job_id = parse_job_id(result.stdout)
    if job_id:
        logger.info("Submitted batch job %s", job_id)
    else:
        logger.info(result.stdout.strip())
    return 0


def submit_job(
    project: ProjectConfig,
    options: SbatchOptions,
    defaults: Defaults,
    export_file: str = "",
) -> int:
    """Generate the launcher and submit or export it.

    The jobs directory is created first, also for exported launchers;
    Slurm needs it for the --output/--error files.

    Args:
        project: Loaded project.
        options: Sbatch options.
        defaults: Loaded defaults.
        export_file: Write the script here instead of submitting.

    Returns:
        0 on success, 1 on failure.
    """
    script = generate_sbatch_script(project, options, defaults)
    ensure_directory(os.path.join(project.root, defaults.jobs_dir_name))

    if export_file:
        return _write_export(script, export_file)
    return _submit_to_sbatch(script, project.root)
