#!/usr/bin/env python
"""
fastml - Command Line Entry Point
Trains workflows from a JSON configuration, explores datasets and scores new data.
"""
import sys
import argparse
import traceback
from pathlib import Path

import pandas as pd

from fastml.api import fastexplore, fastml, load_model, predict, save_model
from fastml.modules.config_manager import ConfigurationManager
from fastml.modules.prediction_engine import PREDICTION_TYPES
from fastml.utils.exceptions import FastMLException
from fastml.utils.file_io import read_dataframe


def parse_arguments(argv=None):
    """
    Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed command-line arguments.
    """
    parser = argparse.ArgumentParser(
        prog="fastml",
        description="fastml - train, explore and predict with tabular ML workflows",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    train = subparsers.add_parser("train", help="Train and compare models from a JSON configuration",
                                  formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    train.add_argument("--config", type=str, required=True, help="Path to the configuration JSON file")
    train.add_argument("--data", type=str, default=None, help="Data file (overrides data.file_path)")
    train.add_argument("--label", type=str, default=None, help="Outcome column (overrides data.label)")
    train.add_argument("--output", type=str, default="fastml_model.joblib", help="Where to save the fitted result")
    train.add_argument("--verbose", action="store_true", help="Enable verbose (INFO) logging")
    train.add_argument("--dry-run", action="store_true",
                       help="Validate configuration without training")

    explore = subparsers.add_parser("explore", help="Exploratory data analysis",
                                    formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    explore.add_argument("--data", type=str, required=True, help="Data file (CSV, Parquet or Excel)")
    explore.add_argument("--label", type=str, default=None, help="Outcome column")
    explore.add_argument("--output-dir", type=str, default="fastml_results", help="Directory for plots and tables")
    explore.add_argument("--interactive", action="store_true", help="Also write an interactive HTML dashboard")
    explore.add_argument("--report", action="store_true", help="Also write a PDF report")

    pred = subparsers.add_parser("predict", help="Predict new data with a saved result",
                                 formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    pred.add_argument("--model", type=str, required=True, help="Result written by 'fastml train'")
    pred.add_argument("--data", type=str, required=True, help="New data file")
    pred.add_argument("--output", type=str, required=True, help="Output file (.csv or .parquet)")
    pred.add_argument("--type", type=str, default="auto", choices=PREDICTION_TYPES, help="Prediction type")

    return parser.parse_args(argv)


def run_train(args) -> int:
    config = ConfigurationManager(config_path=args.config).load_and_validate()
    if args.verbose:
        config['execution']['verbose'] = True
    if args.label:
        config['data']['label'] = args.label

    data_path = args.data or config['data'].get('file_path')
    test_path = config['data'].get('test_file_path')
    if not config['data'].get('label'):
        raise FastMLException("No label given: use --label or set data.label in the configuration.")
    if not data_path:
        raise FastMLException("No data given: use --data or set data.file_path in the configuration.")

    if args.dry_run:
        print(f"\n[SUCCESS] Configuration validated successfully: {args.config}")
        return 0

    if test_path:
        result = fastml(train_data=read_dataframe(data_path), test_data=read_dataframe(test_path), config=config)
    else:
        result = fastml(data=read_dataframe(data_path), config=config)

    result.summary()
    path = save_model(result, args.output)
    print(f"\n[SUCCESS] Training completed. Result saved to: {path}")
    return 0


def run_explore(args) -> int:
    df = read_dataframe(args.data)
    results = fastexplore(df, label=args.label, save_plots=True, output_dir=args.output_dir,
                          interactive=args.interactive, generate_report=args.report, verbose=True)
    print(results['overview'])
    print(f"\n[SUCCESS] Exploration written to: {Path(args.output_dir).absolute()}")
    return 0


def run_predict(args) -> int:
    result = load_model(args.model)
    newdata = read_dataframe(args.data)
    preds = predict(result, newdata, type=args.type)
    if isinstance(preds, dict):
        frames = [_as_frame(p, name) for name, p in preds.items()]
        out = pd.concat(frames, axis=1)
    else:
        out = _as_frame(preds, "prediction")

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    if output.suffix.lower() == ".parquet":
        out.to_parquet(output, index=False)
    else:
        out.to_csv(output, index=False)
    print(f"\n[SUCCESS] {len(out)} predictions written to: {output}")
    return 0


def _as_frame(pred, name: str) -> pd.DataFrame:
    if isinstance(pred, pd.DataFrame):
        frame = pred.reset_index(drop=True)
        return frame if name == "prediction" else frame.add_prefix(f"{name}_")
    return pd.DataFrame({name: list(pred)})


COMMANDS = {'train': run_train, 'explore': run_explore, 'predict': run_predict}


def main(argv=None) -> int:
    """
    Dispatch the requested sub-command.

    Returns:
        int: Exit code (0 for success, 1 for errors)
    """
    args = None
    try:
        args = parse_arguments(argv)
        return COMMANDS[args.command](args)

    except FastMLException as e:
        # Known pipeline errors
        print(f"\n[ERROR] fastml error: {e}")
        return 1

    except KeyboardInterrupt:
        print("\n[INTERRUPTED] Interrupted by user.")
        return 130

    except Exception as e:
        # Unexpected errors
        print(f"\n[CRITICAL] Unexpected error: {e}")
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
