#!/usr/bin/env python
"""
comerws-search: run one COMER/COTHER homology search job.

The job directory is the directory of the input file; per-query working
directories, the results list and the archive are created there.
"""

import sys
from pathlib import Path

import click

from comerws.config.job_config import load_backend_settings
from comerws.pipeline.search_job import JobPaths, run_search_job
from comerws.utils.common import setup_logging
from comerws.utils.error_handling import ComerWSError


@click.command()
@click.option('--input', '-i', 'input_file', required=True,
              type=click.Path(exists=True, dir_okay=False),
              help='Input file of //-separated queries')
@click.option('--options', '-o', 'options_file',
              type=click.Path(exists=True, dir_okay=False),
              help='Job options file (validated and rewritten in place)')
@click.option('--config', '-c', 'config_file', default=None,
              help='Backend configuration YAML (default: config/comerws_config.yaml)')
@click.option('--method', '-m', default='comer', type=click.Choice(['comer', 'cother']),
              help='Profile search method')
@click.option('--status', 'status_file', help='Status (progress) file')
@click.option('--log', 'search_log', help='Log file of the batch profile search')
@click.option('--results-list', 'manifest', help='Results list file')
@click.option('--results', 'archive', help='Compressed results archive')
@click.option('--error-file', 'error_file', help='File of error summaries and exit code')
@click.option('--no-profile', is_flag=True, help='Stop after building MSAs')
@click.option('--no-search', is_flag=True, help='Skip the batch profile search')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
def main(input_file, options_file, config_file, method, status_file, search_log,
         manifest, archive, error_file, no_profile, no_search, verbose):
    """Run a multi-query COMER/COTHER search job."""
    setup_logging("comerws", "DEBUG" if verbose else "INFO")

    paths = JobPaths.for_input(
        Path(input_file).resolve(),
        method=method,
        options_file=Path(options_file).resolve() if options_file else None,
        status_file=status_file,
        error_file=error_file,
        search_log=search_log,
        manifest=manifest,
        archive=archive,
    )

    try:
        settings = load_backend_settings(config_file)
    except ComerWSError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Input: {paths.input_file}")
    click.echo(f"Method: {method}")
    click.echo(f"Results list: {paths.manifest}")
    click.echo(f"Results archive: {paths.archive}")

    exit_code = run_search_job(paths, settings, method, no_profile, no_search)
    if exit_code == 0:
        click.echo("\nJob completed successfully!")
    else:
        click.echo(f"\nJob failed; see {paths.error_file}", err=True)
    sys.exit(exit_code)


if __name__ == '__main__':
    main()
