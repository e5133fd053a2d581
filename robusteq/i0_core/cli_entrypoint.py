# Path: robusteq/i0_core/cli_entrypoint.py
# Purpose: Entry point for the batch equalization pipeline.

import sys
import argparse

from robusteq.i0_core.pipeline_orchestrator import run_pipeline


def build_parser():
    parser = argparse.ArgumentParser(
        prog="robusteq",
        description="Masked robust contrast equalization of .npy image arrays",
    )
    parser.add_argument("--config", default="config.yaml", help="Path to configuration file (YAML)")
    parser.add_argument("--input-dir", help="Directory with input .npy arrays (overrides config)")
    parser.add_argument("--output-dir", help="Directory for equalized arrays (overrides config)")
    parser.add_argument("--alpha", type=float, help="Compression exponent (overrides config)")
    parser.add_argument("--tau", type=float, help="Saturation threshold (overrides config)")
    parser.add_argument("--log-level", help="Logging level (overrides config)")
    return parser


def main(argv=None):
    """
    Entry point for direct CLI runs.
    Configuration and input errors are reported on stdout with exit status 1.
    """
    args = build_parser().parse_args(argv)

    try:
        outputs = run_pipeline(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    print(f"[OK] Equalized {len(outputs)} image(s)")
    return outputs


if __name__ == "__main__":
    main()
