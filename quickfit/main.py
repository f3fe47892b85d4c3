"""Command-line entry point for the quickFit maximum-likelihood fit."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence

import yaml

from quickfit.analysis.fit_tool import FitConfig, FitTool
from quickfit.analysis.preparation import ParameterPreparer
from quickfit.analysis.reporting import Stopwatch, format_summary, format_timing, results_table
from quickfit.analysis.validation import check_model
from quickfit.data_loaders.workspace_loader import WorkspaceLoadError, load_inputs, save_output
from quickfit.utils.logging_config import (
    StructuredLogger,
    build_run_metadata,
    compute_sha256,
    to_json_value,
)
from quickfit.utils.validation import ConfigValidationError, require_existing_file, require_mapping

MINIMIZER_ALGORITHM = "Minuit2"
ORIGINAL_SNAPSHOT = "original"
OPTION_PARSE_EXIT = 999
PROG = "quickFit"


class OptionParseError(Exception):
    """Raised instead of exiting when the command line cannot be parsed."""


class _OptionParser(argparse.ArgumentParser):
    def error(self, message):
        raise OptionParseError(message)


def _str_to_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {'1', 'true', 'yes', 'on'}:
        return True
    if text in {'0', 'false', 'no', 'off'}:
        return False
    raise argparse.ArgumentTypeError(f"expected a boolean (1/0/true/false), got {value!r}")


def _safe_load_yaml(path):
    with open(path, 'r', encoding='utf-8') as handle:
        try:
            loaded = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML file {path} could not be parsed: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(
            f"YAML file {path} must contain a mapping at the top level"
        )
    return loaded


def _load_configuration(config_path):
    if config_path is None:
        return {}
    resolved = require_existing_file(config_path, description='fit configuration file')
    config_data = _safe_load_yaml(resolved)
    config_data['config_path'] = str(resolved)
    config_data['config_dir'] = str(Path(resolved).parent)
    return config_data


def _build_parsers():
    base_parser = _OptionParser(add_help=False)
    base_parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='YAML file whose fit section overrides the option defaults'
    )

    parser = _OptionParser(
        prog=PROG,
        description='Maximum-likelihood fit of a workspace model to a dataset',
        parents=[base_parser],
        add_help=False,
    )
    flag = dict(type=_str_to_bool, nargs='?', const=True)
    parser.add_argument('-h', '--help', action='store_true', help='Print this help message')
    parser.add_argument('-f', '--inputFile', dest='input_file', help='Specify the input workspace file')
    parser.add_argument('-o', '--outputFile', dest='output_file', default='',
                        help='Save fit results to output JSON file')
    parser.add_argument('-d', '--dataName', dest='data_name', default='combData', help='Name of the dataset')
    parser.add_argument('-w', '--wsName', dest='ws_name', default='combWS', help='Name of the workspace')
    parser.add_argument('-m', '--mcName', dest='mc_name', default='ModelConfig', help='Name of the model config')
    parser.add_argument('-s', '--snapshot', dest='snapshot', default='', help='Name of the snapshot to load')
    parser.add_argument('-k', '--ssname', dest='ssname', default='ucmles',
                        help='Name of the snapshot the fitted parameters are saved under')
    parser.add_argument('-p', '--poi', dest='poi', default='',
                        help='POIs to float: name, name=value or name=value_low_high, comma separated')
    parser.add_argument('-n', '--fixNP', dest='fix_np', default='',
                        help='Nuisance parameters to fix, comma separated wildcard patterns')
    parser.add_argument('--simplex', dest='simplex', default=False, help='Run SIMPLEX before the fit', **flag)
    parser.add_argument('--hesse', dest='hesse', default=False, help='Estimate errors with HESSE', **flag)
    parser.add_argument('--minos', dest='minos', default=False, help='Estimate errors with MINOS', **flag)
    parser.add_argument('--nllOffset', dest='nll_offset', default=True, help='Offset the likelihood', **flag)
    parser.add_argument('--numCPU', dest='num_cpu', type=int, default=1, help='Number of threads for the likelihood')
    parser.add_argument('--minStrat', dest='min_strat', type=int, default=1, help='Minimizer strategy')
    parser.add_argument('--optConst', dest='opt_const', type=int, default=2,
                        help='Constant term optimisation level')
    parser.add_argument('--printLevel', dest='print_level', type=int, default=2, help='Minimizer print level')
    parser.add_argument('--minTolerance', dest='min_tolerance', type=float, default=0.001,
                        help='Minimizer convergence tolerance')
    parser.add_argument('--saveWS', dest='save_ws', default=False, help='Save the post-fit workspace', **flag)
    parser.add_argument('--saveErrors', dest='save_errors', default=False,
                        help='Save the POI errors with the results', **flag)
    parser.add_argument('--checkWS', dest='check_ws', default=False,
                        help='Perform sanity checks on the model before fitting', **flag)
    parser.add_argument('--fixStarCache', dest='fix_star_cache', default=False,
                        help='Reuse cached constant terms without revalidation', **flag)
    return base_parser, parser


def _fit_option_keys(parser) -> set:
    return {action.dest for action in parser._actions if action.dest not in {'help', 'config'}}


def _fit_config(args) -> FitConfig:
    return FitConfig(
        algorithm=MINIMIZER_ALGORITHM,
        tolerance=args.min_tolerance,
        strategy=args.min_strat,
        optimize_const=args.opt_const,
        print_level=args.print_level,
        n_cpu=args.num_cpu,
        nll_offset=args.nll_offset,
        use_hesse=args.hesse,
        use_minos=args.minos,
        use_simplex=args.simplex,
        fix_star_cache=args.fix_star_cache,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run one fit and return the process exit code."""
    argv = sys.argv[1:] if argv is None else list(argv)
    base_parser, parser = _build_parsers()
    try:
        preliminary_args, remaining = base_parser.parse_known_args(argv)
    except OptionParseError as exc:
        print(f"Invalid options: {exc}")
        print(f"Use {PROG} --help to get a list of all the allowed options")
        return OPTION_PARSE_EXIT

    config_data = _load_configuration(preliminary_args.config)
    fit_defaults = require_mapping(config_data.get('fit'), "Configuration section 'fit'")
    run_defaults = require_mapping(config_data.get('run'), "Configuration section 'run'")
    unknown = sorted(set(fit_defaults) - _fit_option_keys(parser))
    if unknown:
        raise ConfigValidationError(f"Unknown fit options in configuration: {', '.join(unknown)}")
    parser.set_defaults(**fit_defaults)
    parser.set_defaults(config=preliminary_args.config)

    try:
        args = parser.parse_args(remaining)
    except OptionParseError as exc:
        print(f"Invalid options: {exc}")
        print(f"Use {PROG} --help to get a list of all the allowed options")
        return OPTION_PARSE_EXIT

    if args.help or not args.input_file:
        print(parser.format_help())
        return 0

    run_logger = StructuredLogger(
        run_id=run_defaults.get('run_id'),
        base_dir=Path(run_defaults.get('log_dir', Path('results') / 'runs')),
    )
    run_logger.log_event('run_start', vars(args))

    try:
        workspace, model, data = load_inputs(
            args.input_file, args.ws_name, args.mc_name, args.data_name, args.snapshot or None
        )
    except WorkspaceLoadError as exc:
        run_logger.log_event('load.error', {'error': str(exc)}, level=logging.ERROR, message=f"Error: {exc}")
        return 0
    run_logger.log_event(
        'load.complete',
        {'workspace': workspace.name, 'model_config': model.name, 'dataset': data.name,
         'entries': data.n_entries, 'snapshot': args.snapshot or None},
    )

    workspace.save_snapshot(ORIGINAL_SNAPSHOT, model.collect_everything())

    preparer = ParameterPreparer(workspace, model, run_logger)
    preparer.set_defaults()
    if args.check_ws:
        run_logger.log_event('model_check.start', {}, message="Performing sanity checks on model...")
        valid = check_model(model, throw_on_failure=True, logger=run_logger)
        run_logger.log_event('model_check.result', {'valid': valid},
                             message=f"Sanity checks on the model: {'OK' if valid else 'FAIL'}")
    fit_pois = preparer.prepare(fix_np=args.fix_np, poi=args.poi, apply_defaults=False)

    fitter = FitTool(_fit_config(args), run_logger)
    stopwatch = Stopwatch()
    run_logger.log_event('fit.requested', {'pois': fit_pois.names}, message="\nStarting fit...")
    status = fitter.profile_to_data(model, data)
    cpu_minutes, real_minutes = stopwatch.stop()
    run_logger.log_event(
        'fit.timing',
        {'cpu_minutes': cpu_minutes, 'real_minutes': real_minutes},
        message=format_timing(cpu_minutes, real_minutes),
    )
    table = results_table(fit_pois, save_errors=args.save_errors)
    run_logger.save_results_table('fit_results.csv', table)
    run_logger.log_event(
        'fit.summary',
        {'status': status, 'stage_statuses': fitter.stage_statuses, 'results': to_json_value(table)},
        level=logging.INFO if status == 0 else logging.WARNING,
        message=format_summary(fit_pois, status),
    )

    output_path = None
    if args.output_file:
        payload: Dict[str, object] = {
            'status': status,
            'stage_statuses': fitter.stage_statuses,
            'fit_results': to_json_value(table),
        }
        if args.save_ws:
            workspace.save_snapshot(args.ssname, model.collect_everything())
            payload['workspaces'] = {workspace.name: workspace.to_dict()}
        output_path = save_output(args.output_file, payload)
        run_logger.log_event('output.saved', {'path': output_path}, message=f"Results saved to {output_path}")
    elif args.save_ws:
        run_logger.log_event('output.skipped', {}, level=logging.WARNING,
                             message="No output file given, the post-fit workspace is not saved")

    checksums = {'input': compute_sha256(Path(args.input_file))}
    if config_data.get('config_path'):
        checksums['config'] = compute_sha256(Path(config_data['config_path']))
    metadata = build_run_metadata(
        run_logger,
        arguments=vars(args),
        config_snapshot=config_data,
        checksums=checksums,
        fit_status=status,
        stage_statuses=fitter.stage_statuses,
        timing_minutes={'cpu': cpu_minutes, 'real': real_minutes},
        output_path=output_path,
    )
    run_logger.save_json('run_metadata.json', metadata)
    run_logger.log_event('run_complete', {'status': status})
    return 1


def cli(argv: Optional[Sequence[str]] = None):
    try:
        code = main(argv)
    except ConfigValidationError as exc:
        print(f"\nConfiguration error: {exc}")
        code = 2
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        code = 1
    except Exception as exc:  # pylint: disable=broad-except
        print(f"\nFATAL ERROR: {exc}")
        import traceback
        traceback.print_exc()
        code = 1
    sys.exit(code)


if __name__ == '__main__':
    cli()
